import asyncio
import logging

import config
from init import Session, init_tables, _engine
from txid_checker import BscPaymentVerifier
from settlement_system.services.activation_service import ActivationService
from settlement_system.services.signal_service import SignalService
from settlement_system.services.rank_service import RankService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SettlementScheduler:
    """
    Периодические проверки: повторная верификация платежей,
    автозакрытие сигнальных ордеров и пересчет рангов
    """

    def __init__(
            self,
            session_factory=Session,
            verifier=None,
            verify_interval: int = config.VERIFY_INTERVAL,
            auto_close_interval: int = config.AUTO_CLOSE_INTERVAL,
            rank_check_interval: int = config.RANK_CHECK_INTERVAL
    ):
        self.session_factory = session_factory
        self.verifier = verifier or BscPaymentVerifier()
        self.verify_interval = verify_interval
        self.auto_close_interval = auto_close_interval
        self.rank_check_interval = rank_check_interval
        self._running = False

    async def reverify_payments(self):
        with self.session_factory() as session:
            service = ActivationService(session, self.verifier)
            return await service.reverifyPending(config.VERIFY_BATCH_SIZE)

    async def auto_close_signals(self):
        with self.session_factory() as session:
            return await SignalService(session).autoCloseExpired()

    async def check_ranks(self):
        with self.session_factory() as session:
            return await RankService(session).checkAllRanks()

    async def _loop(self, name: str, job, interval: int):
        logger.info(f"{name} loop started, interval {interval}s")

        while self._running:
            try:
                await job()
            except Exception as e:
                logger.error(f"Error in {name} loop: {e}", exc_info=True)
            await asyncio.sleep(interval)

    async def run(self):
        """
        Запускает все циклы проверки
        """
        logger.info("Settlement scheduler started")
        self._running = True

        await asyncio.gather(
            self._loop("payment verification", self.reverify_payments, self.verify_interval),
            self._loop("signal auto-close", self.auto_close_signals, self.auto_close_interval),
            self._loop("rank check", self.check_ranks, self.rank_check_interval),
        )

    async def stop(self):
        """
        Останавливает циклы после текущей итерации
        """
        self._running = False
        logger.info("Settlement scheduler stopped")


def main():
    init_tables(_engine)
    scheduler = SettlementScheduler()

    try:
        asyncio.run(scheduler.run())
    except KeyboardInterrupt:
        logger.info("Settlement scheduler interrupted")


if __name__ == "__main__":
    main()
