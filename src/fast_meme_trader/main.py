"""
Fast Meme Trader - Main Entry Point

Buys a Solana token through Jupiter or pump.fun, then watches open positions
and sells them when their exit strategy triggers.

Usage:
    python -m fast_meme_trader.main --token MINT --amount 0.1 [--strategy conservative_ath]
    python -m fast_meme_trader.main --health            # Print a health report
    python -m fast_meme_trader.main --detect-platform MINT
    python -m fast_meme_trader.main --liquidate-on-exit # Sell everything on shutdown

Configuration:
    The bot reads configuration from:
    1. Environment variables
    2. A .env file in the working directory (existing variables win)
    3. Command line arguments

Environment Variables:
    WALLET_PRIVATE_KEY        Wallet secret key (required). base58, JSON array,
                              hex or comma-separated bytes
    HELIUS_API_KEY            Helius key for RPC and priority fee estimates
    SOLANA_RPC_URL            RPC endpoint (default: Helius if keyed, else public)
    JUPITER_QUOTE_URL         Jupiter swap API base (default: https://quote-api.jup.ag/v6)
    JUPITER_PRICE_URL         Jupiter price API (default: https://api.jup.ag/price/v2)
    MAX_PRIORITY_FEE          Priority fee cap (default: 200000)
    FALLBACK_PRIORITY_FEE     Priority fee when no estimate (default: 150000)
    SELL_SLIPPAGE_BPS         Slippage for sells (default: 500)
    MONITOR_INTERVAL_SECONDS  Delay between monitoring cycles (default: 10)
    LOG_LEVEL                 Logging level (DEBUG/INFO/WARNING/ERROR)
    PID_FILE                  Singleton lock file (default: /tmp/fast-meme-trader.pid)
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Generator, List, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from fast_meme_trader.core import MonitorConfig, MonitoringLoop
from fast_meme_trader.execution import (
    OrderPipeline,
    Platform,
    PipelineConfig,
    PlatformSelector,
    PositionStore,
    StrategyType,
    TradeRequest,
    TradeResult,
    TradingService,
)
from fast_meme_trader.ingestion import JupiterClient, PumpFunClient, SolanaRpcClient
from fast_meme_trader.wallet import InvalidPrivateKeyError, KeypairSigner, parse_private_key

# Default PID file location
DEFAULT_PID_FILE = "/tmp/fast-meme-trader.pid"


class SingletonBotError(Exception):
    """Raised when another bot instance is already running."""
    pass


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""
    pass


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Generator[None, None, None]:
    """
    Context manager that ensures only one bot instance trades the wallet.

    Two instances would race for the same blockhash and double-sell
    positions. Uses fcntl.LOCK_EX | fcntl.LOCK_NB on a PID file; the lock
    is released when the process exits.

    Raises:
        SingletonBotError: If another instance is already running
    """
    pid_path = Path(pid_file)

    # Read existing PID before opening (which would truncate)
    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        if existing_pid:
            raise SingletonBotError(
                f"Another bot instance is already running (PID: {existing_pid}). "
                f"Kill it with: kill {existing_pid}"
            )
        raise SingletonBotError(
            "Another bot instance is already running. "
            "Check for existing processes: ps aux | grep fast_meme_trader"
        )

    # We have the lock - now truncate and write our PID
    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)

    try:
        logger.info(f"Acquired singleton lock (PID: {os.getpid()}, file: {pid_file})")
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Wallet
    private_key: str = ""

    # Endpoints
    helius_api_key: Optional[str] = None
    rpc_url: Optional[str] = None
    jupiter_quote_url: str = JupiterClient.QUOTE_API
    jupiter_price_url: str = JupiterClient.PRICE_API

    # Fees and slippage
    max_priority_fee: int = 200_000
    fallback_priority_fee: int = 150_000
    sell_slippage_bps: int = 500

    # Monitoring
    monitor_interval_seconds: float = 10.0

    # Process
    pid_file: str = DEFAULT_PID_FILE

    @classmethod
    def from_env(cls) -> "BotConfig":
        """
        Load configuration from environment variables.

        Raises:
            ConfigError: If a numeric variable is malformed
        """
        env = os.environ
        try:
            return cls(
                private_key=env.get("WALLET_PRIVATE_KEY", ""),
                helius_api_key=env.get("HELIUS_API_KEY") or None,
                rpc_url=env.get("SOLANA_RPC_URL") or None,
                jupiter_quote_url=env.get("JUPITER_QUOTE_URL", JupiterClient.QUOTE_API),
                jupiter_price_url=env.get("JUPITER_PRICE_URL", JupiterClient.PRICE_API),
                max_priority_fee=int(env.get("MAX_PRIORITY_FEE", "200000")),
                fallback_priority_fee=int(env.get("FALLBACK_PRIORITY_FEE", "150000")),
                sell_slippage_bps=int(env.get("SELL_SLIPPAGE_BPS", "500")),
                monitor_interval_seconds=float(env.get("MONITOR_INTERVAL_SECONDS", "10")),
                pid_file=env.get("PID_FILE", DEFAULT_PID_FILE),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid configuration value: {e}")

    @property
    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(sell_slippage_bps=self.sell_slippage_bps)

    @property
    def monitor_config(self) -> MonitorConfig:
        return MonitorConfig(interval_seconds=self.monitor_interval_seconds)


class TradingBot:
    """
    Main bot orchestrator.

    Manages the lifecycle of all components:
    - Venue, price and RPC clients
    - Trading service (store, pipeline, selector)
    - Monitoring loop
    """

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in init())
        self._jupiter: Optional[JupiterClient] = None
        self._rpc: Optional[SolanaRpcClient] = None
        self._service: Optional[TradingService] = None
        self._monitor: Optional[MonitoringLoop] = None

    @property
    def service(self) -> TradingService:
        if self._service is None:
            raise RuntimeError("TradingBot not initialized")
        return self._service

    async def init(self) -> None:
        """
        Build clients and services.

        Raises:
            ConfigError: If the wallet key is missing or unreadable
        """
        if not self.config.private_key:
            raise ConfigError("WALLET_PRIVATE_KEY environment variable is required")
        try:
            keypair = parse_private_key(self.config.private_key)
        except InvalidPrivateKeyError as e:
            raise ConfigError(str(e))

        signer = KeypairSigner(keypair)
        logger.info(f"Wallet: {signer.public_key}")

        self._jupiter = JupiterClient(
            quote_url=self.config.jupiter_quote_url,
            price_url=self.config.jupiter_price_url,
        )
        self._rpc = SolanaRpcClient(
            rpc_url=self.config.rpc_url,
            helius_api_key=self.config.helius_api_key,
            max_priority_fee=self.config.max_priority_fee,
            fallback_priority_fee=self.config.fallback_priority_fee,
        )
        pumpfun = PumpFunClient()

        pipeline = OrderPipeline(
            venues={Platform.JUPITER: self._jupiter, Platform.PUMPFUN: pumpfun},
            ledger=self._rpc,
            signer=signer,
            fee_estimator=self._rpc,
            config=self.config.pipeline_config,
        )
        self._service = TradingService(
            pipeline=pipeline,
            store=PositionStore(),
            selector=PlatformSelector(probe=pumpfun),
            oracle=self._jupiter,
            balances=self._rpc,
            owner=signer.public_key,
        )

    async def start(
        self,
        request: Optional[TradeRequest] = None,
        liquidate_on_exit: bool = False,
    ) -> int:
        """
        Optionally buy, then monitor until a shutdown signal.

        Returns:
            Process exit code
        """
        logger.info("=" * 60)
        logger.info("FAST MEME TRADER")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            if request is not None:
                result = await self.service.buy(request)
                log_trade_result("Buy", result)
                if not result.success:
                    return 1

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return 0

            self._monitor = MonitoringLoop(self.service, self.config.monitor_config)
            await self._monitor.start()
            await self._shutdown_event.wait()
            return 0

        finally:
            await self.stop(liquidate=liquidate_on_exit)

    async def stop(self, liquidate: bool = False) -> None:
        """Stop the bot gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self._monitor:
            await self._monitor.stop()

        if liquidate and self._service:
            for result in await self._service.emergency_liquidate_all():
                log_trade_result("Liquidation", result)

        await self.close()
        logger.info("Shutdown complete")

    async def close(self) -> None:
        """Close HTTP sessions."""
        for client in (self._jupiter, self._rpc):
            if client is not None:
                await client.close()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def log_trade_result(action: str, result: TradeResult) -> None:
    if result.success:
        logger.info(
            f"{action} succeeded via {result.platform_used.value}: {result.signature} "
            f"({result.execution_time_ms}ms)"
        )
        if result.tokens_received is not None:
            logger.info(f"Tokens received: {result.tokens_received}")
    else:
        logger.error(f"{action} failed [{result.error_type}]: {result.error}")


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Fast Meme Trader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--token", type=str, help="Mint address to buy")
    parser.add_argument("--amount", type=str, help="SOL to spend on the buy")
    parser.add_argument(
        "--strategy",
        type=str,
        default="conservative_ath",
        help="Exit strategy: conservative, aggressive, conservative_ath, aggressive_ath",
    )
    parser.add_argument(
        "--slippage-bps",
        type=int,
        default=100,
        help="Buy slippage in basis points (default: 100)",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        help="Print a health report and exit",
    )
    parser.add_argument(
        "--detect-platform",
        metavar="MINT",
        help="Print the venue a buy of MINT would use and exit",
    )
    parser.add_argument(
        "--liquidate-on-exit",
        action="store_true",
        help="Sell all open positions when shutting down",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


def build_trade_request(args: argparse.Namespace) -> Optional[TradeRequest]:
    """
    Turn --token/--amount/--strategy into a TradeRequest.

    Raises:
        ConfigError: On a missing amount or unknown strategy
    """
    if not args.token:
        return None
    if not args.amount:
        raise ConfigError("--amount is required with --token")
    try:
        amount = Decimal(args.amount)
    except InvalidOperation:
        raise ConfigError(f"Invalid amount: {args.amount}")
    if not amount.is_finite():
        raise ConfigError(f"Invalid amount: {args.amount}")
    try:
        strategy = StrategyType.from_name(args.strategy)
    except ValueError as e:
        raise ConfigError(str(e))

    return TradeRequest(
        token_id=args.token,
        amount_sol=amount,
        slippage_bps=args.slippage_bps,
        strategy=strategy,
    )


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    try:
        config = BotConfig.from_env()
        request = build_trade_request(args)
        bot = TradingBot(config)
        await bot.init()
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if args.health:
        try:
            report = await bot.service.health_check()
        finally:
            await bot.close()
        for line in report.lines():
            print(line)
        return 0 if report.healthy else 1

    if args.detect_platform:
        try:
            platform = await bot.service.detect_platform(args.detect_platform)
        finally:
            await bot.close()
        print(f"{args.detect_platform}: {platform.value}")
        return 0

    try:
        return await bot.start(request, liquidate_on_exit=args.liquidate_on_exit)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    # Read-only modes don't trade, so they can run next to a live bot
    if args.health or args.detect_platform:
        return asyncio.run(main_async(args))

    pid_file = os.environ.get("PID_FILE", DEFAULT_PID_FILE)
    try:
        with singleton_lock(pid_file):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonBotError as e:
        logger.error(str(e))
        print(f"\n{e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
