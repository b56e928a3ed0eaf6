import asyncio
import json
import os
import sys

from prediction_agent.agent import PredictionAgent
from prediction_agent.config import AgentConfig, BacktestParams
from prediction_agent.data.price_service import default_price_source
from prediction_agent.errors import PredictionAgentError
from prediction_agent.trading.backtest import run_market_backtest
from prediction_agent.trading.journal import TradeJournal
from prediction_agent.utils.logger import log


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def run_backtest_mode():
    params = BacktestParams(
        bet_percent=float(os.environ.get("PA_BET_PERCENT", "0.02")),
        skip_threshold_confidence=float(os.environ.get("PA_SKIP_THRESHOLD", "60")),
        stop_loss_percent=float(os.environ.get("PA_STOP_LOSS", "0.10")),
        take_profit_percent=float(os.environ.get("PA_TAKE_PROFIT", "0.05")),
        starting_bankroll=float(os.environ.get("PA_BANKROLL", "100")),
        compare_random=_env_bool("PA_COMPARE_RANDOM", False),
    )
    db_path = os.environ.get("PA_DB", "")
    journal = TradeJournal(db_path) if db_path else None
    try:
        result = run_market_backtest(
            os.environ.get("PA_MARKET", "BTC"),
            int(os.environ.get("PA_DAYS", "30")),
            params,
            journal=journal,
        )
    finally:
        if journal is not None:
            journal.close()

    result.pop("all_bets", None)
    result.pop("equity_curve", None)
    print(json.dumps(result, indent=2))


def run_paper_mode():
    cfg = AgentConfig(
        market=os.environ.get("PA_MARKET", "BTC"),
        candle_interval=os.environ.get("PA_INTERVAL", "1m"),
        round_interval=float(os.environ.get("PA_ROUND_INTERVAL", "60")),
        resolution_delay=float(os.environ.get("PA_RESOLUTION_DELAY", "30")),
        profile=os.environ.get("PA_PROFILE", "conservative"),
        stop_on_pause=_env_bool("PA_STOP_ON_PAUSE", True),
        session_id=os.environ.get("PA_SESSION", "default"),
        db_path=os.environ.get("PA_DB", "prediction_agent.db"),
    )
    deposit = float(os.environ.get("PA_DEPOSIT", "0"))

    journal = TradeJournal(cfg.db_path) if cfg.db_path else None
    agent = PredictionAgent(cfg, default_price_source(cfg.market), journal=journal)
    if deposit > 0:
        agent.deposit(deposit)

    if agent.bankroll <= 0:
        print("=" * 60)
        print("  ERROR: Bankroll is empty!")
        print()
        print("  Set a paper deposit before starting:")
        print("    export PA_DEPOSIT=100    # Linux/Mac")
        print("    set PA_DEPOSIT=100       # Windows")
        print("=" * 60)
        sys.exit(1)

    async def run():
        try:
            await agent.run()
        except Exception as e:
            log.error("Critical error: %s", e, exc_info=True)
            agent.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        agent.stop()
    finally:
        log.info("🏁 Final: %s", agent.dashboard())
        if journal is not None:
            journal.close()


def main():
    mode = os.environ.get("PA_MODE", "paper").lower()
    try:
        if mode == "backtest":
            run_backtest_mode()
        elif mode == "paper":
            run_paper_mode()
        else:
            print(f"Unknown PA_MODE '{mode}'. Use 'paper' or 'backtest'.")
            sys.exit(2)
    except PredictionAgentError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
