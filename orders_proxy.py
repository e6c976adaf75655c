"""
Asyncio pass-through proxy for the upstream orders API.
Relays order data to a browser front-end with a single-origin CORS policy.
"""

import asyncio
import logging
import os
import sys
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import quote

import aiohttp_cors
from aiohttp import web, ClientError, ClientSession, ClientTimeout, TCPConnector
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_URL = 'https://tjufwmnunr.ap-northeast-1.awsapprunner.com/api/v1'
DEFAULT_ALLOWED_ORIGIN = 'http://localhost:3000'
MISSING_ORDER_ID = 'orderId is required'
CORS_ALLOWED_METHODS = ('GET', 'POST', 'OPTIONS')
CORS_ALLOWED_HEADERS = ('Content-Type',)


class UpstreamError(Exception):
    """The upstream exchange failed before a complete response was read."""


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _describe(exc: BaseException) -> str:
    # asyncio.TimeoutError has an empty message
    return str(exc) or type(exc).__name__


class OrdersProxy:
    """Pass-through proxy for the orders API with CORS and a health endpoint."""

    def __init__(self, host: str = None, port: int = None,
                 upstream_url: str = None, orders_path: str = None,
                 allowed_origin: str = None, upstream_timeout: float = None,
                 max_connections: int = None, pass_through_status: bool = None):
        self.host = host or os.getenv('PROXY_HOST', '0.0.0.0')
        self.port = int(port if port is not None else os.getenv('PROXY_PORT', 5001))
        self.upstream_url = (upstream_url or os.getenv('UPSTREAM_BASE_URL', DEFAULT_UPSTREAM_URL)).rstrip('/')
        self.orders_path = orders_path or os.getenv('UPSTREAM_ORDERS_PATH', '/orders')
        self.allowed_origin = allowed_origin or os.getenv('ALLOWED_ORIGIN', DEFAULT_ALLOWED_ORIGIN)
        self.upstream_timeout = float(upstream_timeout if upstream_timeout is not None else os.getenv('UPSTREAM_TIMEOUT', 10))
        self.max_connections = int(max_connections if max_connections is not None else os.getenv('MAX_CONNECTIONS', 100))
        if pass_through_status is None:
            pass_through_status = _env_flag('PASS_THROUGH_STATUS')
        self.pass_through_status = pass_through_status

        self.app = web.Application()
        self.cors = aiohttp_cors.setup(self.app, defaults={
            self.allowed_origin: aiohttp_cors.ResourceOptions(
                allow_credentials=True,
                allow_headers=CORS_ALLOWED_HEADERS,
                allow_methods=CORS_ALLOWED_METHODS,
            )
        })
        self.client_session: Optional[ClientSession] = None
        self.runner: Optional[web.AppRunner] = None

        self.stats = self._fresh_stats()

        self.routes = [
            ('GET', '/get-orders', self.get_orders),
            # empty segment allowed so a missing orderId gets a 400, not a 404
            ('GET', '/get-order/{orderId:[^{}/]*}', self.get_order),
            ('GET', '/health', self.health_check),
        ]

        self._setup_routes()
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

    @staticmethod
    def _fresh_stats() -> dict:
        return {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'start_time': datetime.now().isoformat(),
            'active_connections': 0
        }

    def _setup_routes(self):
        """Setup proxy routes. Only GET is registered; other methods get aiohttp's 405."""
        for method, path, handler in self.routes:
            if method == 'GET':
                route = self.app.router.add_get(path, handler, allow_head=False)
            else:
                route = self.app.router.add_route(method, path, handler)
            # preflight OPTIONS is answered by aiohttp_cors, never by the handler
            self.cors.add(route)

        logger.info(f"Proxy routes configured: {len(self.routes)} endpoints")

    async def _on_startup(self, app: web.Application):
        await self.setup_client_session()

    async def _on_cleanup(self, app: web.Application):
        if self.client_session:
            await self.client_session.close()
            self.client_session = None
            logger.info("Client session closed")

    async def setup_client_session(self):
        """Setup HTTP client session with connection pooling and a bounded timeout."""
        connector = TCPConnector(
            limit=self.max_connections,
            ttl_dns_cache=300
        )
        self.client_session = ClientSession(
            connector=connector,
            timeout=ClientTimeout(total=self.upstream_timeout)
        )
        logger.info(f"Client session created with max_connections={self.max_connections}, "
                    f"timeout={self.upstream_timeout}s")

    def upstream_target(self, path: str, identifier: Optional[str] = None) -> str:
        url = f"{self.upstream_url}{path}"
        if identifier is not None:
            # one path segment; "?", "#" and "/" must not leak into the upstream URL
            url = f"{url}/{quote(identifier, safe='')}"
        return url

    async def fetch_upstream(self, path: str, identifier: Optional[str] = None) -> Tuple[int, bytes]:
        """GET the upstream resource and return its status and raw body.

        Any completed exchange is returned, whatever its status. Transport
        failures (DNS, TCP, TLS, timeout) raise UpstreamError. Nothing is retried.
        """
        url = self.upstream_target(path, identifier)
        logger.info(f"Requesting upstream API: {url}")

        self.stats['total_requests'] += 1
        self.stats['active_connections'] += 1
        try:
            async with self.client_session.get(url) as resp:
                logger.info(f"Upstream API responded with status: {resp.status}")
                try:
                    body = await resp.read()
                except (ClientError, asyncio.TimeoutError) as e:
                    raise UpstreamError(f"Failed to read upstream response: {_describe(e)}") from e
                self.stats['successful_requests'] += 1
                return resp.status, body

        except UpstreamError as e:
            logger.error(str(e))
            self.stats['failed_requests'] += 1
            raise
        except (ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to fetch from upstream API: {_describe(e)}")
            self.stats['failed_requests'] += 1
            raise UpstreamError(f"Upstream API call failed: {_describe(e)}") from e

        finally:
            self.stats['active_connections'] -= 1

    def _error_status(self, upstream_status: int) -> int:
        if self.pass_through_status and upstream_status >= 400:
            return upstream_status
        return 500

    async def relay(self, request: web.Request, identifier: Optional[str] = None) -> web.Response:
        """Relay one upstream orders resource back to the caller."""
        logger.info(f"Handling {request.method} {request.url}")

        try:
            status, body = await self.fetch_upstream(self.orders_path, identifier)
        except UpstreamError as e:
            return web.Response(status=500, text=str(e))

        if status != 200:
            text = body.decode('utf-8', errors='replace')
            logger.warning(f"Error response body ({len(body)} bytes): {text}")
            return web.Response(
                status=self._error_status(status),
                text=f"Upstream API returned status {status}\nBody: {text}"
            )

        if identifier is None:
            logger.info(f"Success: {len(body)} bytes retrieved from upstream")
        else:
            logger.info(f"Success: {len(body)} bytes retrieved for orderId {identifier}")

        return web.Response(status=200, body=body, content_type='application/json')

    async def get_orders(self, request: web.Request) -> web.Response:
        """List all orders."""
        return await self.relay(request)

    async def get_order(self, request: web.Request) -> web.Response:
        """Fetch a single order by its id."""
        order_id = request.match_info.get('orderId', '')
        if not order_id:
            logger.warning(f"Rejected {request.url}: missing orderId")
            return web.Response(status=400, text=MISSING_ORDER_ID)
        return await self.relay(request, order_id)

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'upstream_url': self.upstream_url,
            'stats': self.stats
        })

    async def start(self):
        """Bind the proxy and serve until cancelled."""
        # handler_cancellation aborts the upstream call when the caller disconnects
        self.runner = web.AppRunner(self.app, handler_cancellation=True)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await self.runner.cleanup()
            raise
        logger.info(f"Orders proxy started on {self.host}:{self.port} -> {self.upstream_url}")

        try:
            await asyncio.Event().wait()
        finally:
            logger.info("Shutting down...")
            await self.runner.cleanup()


async def main():
    """Main entry point."""
    proxy = OrdersProxy()

    logger.info(f"Starting orders proxy on port {proxy.port}...")
    await proxy.start()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Orders proxy terminated")
    except OSError as e:
        logger.error(f"Server failed to start: {e}")
        sys.exit(1)


if __name__ == '__main__':
    run()
