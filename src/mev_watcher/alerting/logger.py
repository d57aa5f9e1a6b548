"""Detection logging - formats detections for console and rotating file output."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..models import ArbitrageOpportunity, Detection, SandwichAttack


class DetectionFormatter(logging.Formatter):
    """Custom formatter for detection records."""

    SANDWICH_FORMAT = """
================================================================================
{timestamp} | MEV | SANDWICH
--------------------------------------------------------------------------------
  Slot:        {slot}
  DEX:         {dex}
  Token:       {token}
  Attacker:    {attacker}
  Victim Δ:    {profit}
  Atk. net:    {attacker_profit}
  Frontrun:    {frontrun}
  Victim:      {victim}
  Backrun:     {backrun}
================================================================================
"""

    ARBITRAGE_FORMAT = """
================================================================================
{timestamp} | MEV | ARBITRAGE
--------------------------------------------------------------------------------
  Slot:        {slot}
  Route:       {buy_dex} -> {sell_dex}
  Cycle:       {token_in} -> {token_out} -> {token_in}
  Profit:      {profit_percent:.4f}%
  Tx:          {signature}
================================================================================
"""

    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, "detection"):
            return self._format_detection(record.detection)
        return super().format(record)

    def _format_detection(self, detection: Detection) -> str:
        timestamp = detection.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        if isinstance(detection, SandwichAttack):
            return self.SANDWICH_FORMAT.format(
                timestamp=timestamp,
                slot=detection.slot,
                dex=detection.dex or "Unknown",
                token=detection.token_address,
                attacker=detection.attacker or "Unknown",
                profit=detection.profit,
                attacker_profit=detection.attacker_profit,
                frontrun=detection.frontrun_tx,
                victim=detection.victim_tx,
                backrun=detection.backrun_tx,
            )

        return self.ARBITRAGE_FORMAT.format(
            timestamp=timestamp,
            slot=detection.slot,
            buy_dex=detection.buy_dex,
            sell_dex=detection.sell_dex,
            token_in=detection.token_in,
            token_out=detection.token_out,
            profit_percent=detection.profit_percent,
            signature=detection.signature or "Unknown",
        )


class DetectionLogger:
    """Handles detection output to console and file."""

    def __init__(
        self,
        log_file: str | Path,
        log_level: str = "INFO",
        max_file_size_mb: int = 10,
        backup_count: int = 5,
        stream=None,
    ):
        self.log_file = Path(log_file)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.max_file_size = max_file_size_mb * 1024 * 1024
        self.backup_count = backup_count
        self._stream = stream or sys.stdout

        self._logger = logging.getLogger("mev_watcher.detections")
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging handlers."""
        self._logger.setLevel(self.log_level)
        self._logger.handlers.clear()
        self._logger.propagate = False

        # Ensure log directory exists
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

        console_handler = logging.StreamHandler(self._stream)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(DetectionFormatter())
        self._logger.addHandler(console_handler)

        # File handler with rotation
        file_handler = RotatingFileHandler(
            self.log_file,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(DetectionFormatter())
        self._logger.addHandler(file_handler)

    def close(self):
        """Flush and detach handlers."""
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)

    def log_detection(self, detection: Detection):
        """Log a detection to console and file. Usable as a dispatcher subscriber."""
        record = self._logger.makeRecord(
            name="mev_watcher.detections",
            level=logging.WARNING,
            fn="",
            lno=0,
            msg=f"{detection.ALERT_TYPE} detected",
            args=(),
            exc_info=None,
        )
        record.detection = detection
        self._logger.handle(record)


def setup_app_logging(level: str = "INFO"):
    """Set up application-wide logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
