from decimal import Decimal
from typing import Optional
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import ScheduleConfigurationError
from clinic_scheduler.schemas.payment import FeeConfig, ResolvedFee

logger = logging.getLogger("fees")

VIRTUAL_FEE = "virtual_fee"
CONSULTATION_FEE = "consultation_fee"
PLATFORM_DEFAULT = "platform_default"


class FeeResolver:

    def __init__(self, config: SchedulingConfig):
        self.config = config

    def resolve(self, fee_config: FeeConfig, is_virtual: bool, doctor_id: Optional[str] = None) -> ResolvedFee:
        """
        Virtual: virtual fee, then consultation fee, then the platform default.
        In person: consultation fee, then the platform default.
        """
        candidates = []
        if is_virtual:
            candidates.append((VIRTUAL_FEE, fee_config.consultation_fee_virtual))
        candidates.append((CONSULTATION_FEE, fee_config.consultation_fee))

        modality = "virtual" if is_virtual else "in_person"
        for position, (source, amount) in enumerate(candidates):
            if amount is None:
                continue
            if amount < 0:
                raise ScheduleConfigurationError(
                    f"Doctor {doctor_id} has a negative {source}",
                    details={"doctor_id": doctor_id, "source": source, "amount": str(amount)}
                )
            if position > 0:
                logger.warning(
                    f"Fee fallback for doctor {doctor_id} ({modality}): "
                    f"using {source} {amount} {self.config.currency}"
                )
            return ResolvedFee(amount=Decimal(amount), currency=self.config.currency, source=source)

        amount = self.config.platform_default_fee
        logger.warning(
            f"Fee fallback for doctor {doctor_id} ({modality}): "
            f"no fee configured, using platform default {amount} {self.config.currency}"
        )
        return ResolvedFee(amount=amount, currency=self.config.currency, source=PLATFORM_DEFAULT)
