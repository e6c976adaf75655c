import json
import os
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler

ORDERS = [
    {"id": "1", "userId": "1", "amount": 1200, "status": "paid"},
    {"id": "2", "userId": "2", "amount": 850, "status": "pending"},
    {"id": "3", "userId": "1", "amount": 3400, "status": "shipped"},
]


class OrdersTargetHandler(BaseHTTPRequestHandler):
    """Stand-in for the upstream orders API: GET /orders and GET /orders/<id>."""

    orders = ORDERS

    def _send_json(self, status, payload):
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        path = self.path.split('?', 1)[0].rstrip('/')

        if path == '/orders':
            self._send_json(200, self.orders)
            return

        if path.startswith('/orders/'):
            order_id = path[len('/orders/'):]
            for order in self.orders:
                if order['id'] == order_id:
                    self._send_json(200, order)
                    return
            self._send_json(404, {"error": f"order {order_id} not found"})
            return

        self._send_json(404, {"error": "not found"})


def make_server(host='', port=8000):
    return ThreadingHTTPServer((host, port), OrdersTargetHandler)


def run_target(port=None):
    port = int(port or os.getenv('MOCK_PORT', 8000))
    httpd = make_server(port=port)
    print(f"🎯 Mock orders API running on port {port}...")
    httpd.serve_forever()


if __name__ == '__main__':
    run_target()
