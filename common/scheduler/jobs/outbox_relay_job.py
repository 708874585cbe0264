from common.outbox.relay import OutboxRelay, RelayReport
from common.utils.logging_utils import get_logger

logger = get_logger('outbox_relay_job')


class OutboxRelayJob:

    def __init__(self, relay: OutboxRelay, batch_size: int = 100):
        self.relay = relay
        self.batch_size = batch_size

    def execute(self) -> RelayReport:
        report = self.relay.run_once(self.batch_size)

        if report.flagged:
            logger.error(f"Outbox entries flagged for inspection: {report.flagged}")

        return report
