import argparse
import logging

import socketio
from aiohttp import web
from colorama import init, Fore

from api.routes import setup_routes
from config import allowed_origins, load_config
from discovery.new_token_detector import NewTokenDetector
from discovery.scheduler import TaskScheduler
from fanout.socket_server import FanOutBroadcaster
from market_data.geckoterminal_api import GeckoTerminalAPI

init(autoreset=True)

logger = logging.getLogger(__name__)


def print_banner(config):
    detector = config['detector']
    fanout = config['fanout']
    server = config['server']

    print(f"\n{Fore.CYAN}{'='*50}")
    print(f"{Fore.GREEN}🚀 Snipe Radar - New Pool Discovery")
    print(f"{Fore.CYAN}{'='*50}")
    print(f"{Fore.YELLOW}Chains: {Fore.WHITE}{', '.join(c.upper() for c in config['chains'])}")
    print(f"{Fore.YELLOW}Poll interval: {Fore.WHITE}{detector['poll_interval_ms']}ms")
    print(f"{Fore.YELLOW}Min liquidity: {Fore.WHITE}${detector['min_liquidity_usd']:,.0f}")
    print(f"{Fore.YELLOW}Max age: {Fore.WHITE}{detector['max_age_seconds']}s")
    print(f"{Fore.YELLOW}Snapshots: {Fore.WHITE}trending {fanout['trending_interval_seconds']}s, "
          f"price {fanout['price_interval_seconds']}s, stats {fanout['stats_interval_seconds']}s")
    print(f"{Fore.YELLOW}Listening: {Fore.WHITE}http://{server['host']}:{server['port']}")
    print(f"{Fore.CYAN}{'='*50}\n")


def create_app(config, client=None, sio=None) -> web.Application:
    """
    Assemble client, detector, broadcaster and HTTP API into one aiohttp app.
    Background tasks start with the app and are torn down on cleanup.
    """
    origins = allowed_origins(config)

    client = client or GeckoTerminalAPI(config['geckoterminal'], chains=config['chains'])
    scheduler = TaskScheduler()
    detector = NewTokenDetector(client, config['detector'], chains=config['chains'],
                                scheduler=scheduler)

    sio = sio or socketio.AsyncServer(async_mode='aiohttp', cors_allowed_origins=origins)
    broadcaster = FanOutBroadcaster(sio, client, detector, scheduler, config['fanout'])

    app = web.Application()
    if isinstance(sio, socketio.AsyncServer):
        sio.attach(app)
    setup_routes(app, client, detector, origins)

    async def _on_startup(_: web.Application):
        detector.start({
            'chains': config['chains'],
            'poll_interval_ms': config['detector']['poll_interval_ms'],
            'min_liquidity_usd': config['detector']['min_liquidity_usd'],
            'max_age_seconds': config['detector']['max_age_seconds'],
        })
        broadcaster.start()

    async def _on_cleanup(_: web.Application):
        broadcaster.stop()
        detector.stop()
        await scheduler.shutdown()
        await client.close()
        logger.info("Shutdown complete")

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def main():
    parser = argparse.ArgumentParser(description="Snipe Radar - multi-chain new pool discovery")
    parser.add_argument("--config", help="YAML config file (overrides defaults)")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = parser.parse_args()

    config = load_config(args.config)
    if args.host:
        config['server']['host'] = args.host
    if args.port:
        config['server']['port'] = args.port
    if args.log_level:
        config['logging']['level'] = args.log_level

    logging.basicConfig(
        level=getattr(logging, str(config['logging']['level']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    print_banner(config)

    app = create_app(config)
    try:
        web.run_app(app, host=config['server']['host'], port=config['server']['port'],
                    print=None)
    except KeyboardInterrupt:
        print(f"{Fore.YELLOW}Stopped by user")


if __name__ == "__main__":
    main()
