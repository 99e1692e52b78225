from datetime import timedelta
from typing import Callable, List, Optional
import logging

from clinic_scheduler.config.settings import SchedulingConfig
from clinic_scheduler.exceptions import (
    InvalidRatingError,
    PreconditionFailedError,
    SurveyNotFoundError,
    TokenAlreadyUsedError,
)
from clinic_scheduler.models.survey import SurveyStatus
from clinic_scheduler.repositories.base import SchedulingRepository
from clinic_scheduler.schemas.reminder import DispatchSummary
from clinic_scheduler.schemas.survey import NewSurvey, SurveyRecord, SurveyResponseRecord
from clinic_scheduler.utils.tokens import generate_response_token

logger = logging.getLogger("surveys")

RATING_FIELDS = ("doctor_rating", "punctuality_rating", "clarity_rating", "treatment_rating")

SurveySender = Callable[[SurveyRecord], None]


class SurveyScheduler:

    def __init__(self, repository: SchedulingRepository, clock, config: SchedulingConfig):
        self.repository = repository
        self.clock = clock
        self.config = config

    def generate_surveys(self) -> List[SurveyRecord]:
        delay = timedelta(hours=self.config.survey_delay_hours)
        created = []
        with self.repository.transaction():
            for appointment in self.repository.find_completed_without_survey():
                created.append(self.repository.insert_survey(NewSurvey(
                    appointment_id=appointment.id,
                    doctor_id=appointment.doctor_id,
                    patient_id=appointment.patient_id,
                    token=generate_response_token(),
                    scheduled_for=appointment.end_time + delay
                )))
        logger.info(f"Generated {len(created)} surveys")
        return created

    def dispatch_due(self, sender: SurveySender) -> DispatchSummary:
        summary = DispatchSummary()
        for survey in self.repository.list_due_surveys(self.clock.now()):
            try:
                sender(survey)
            except Exception as e:
                logger.error(f"Failed to send survey {survey.id} for appointment {survey.appointment_id}: {e}")
                summary.failed += 1
                continue

            try:
                self.repository.update_survey(
                    survey.id,
                    {"status": SurveyStatus.SENT, "sent_at": self.clock.now()},
                    SurveyStatus.PENDING
                )
            except PreconditionFailedError as e:
                logger.info(f"Survey {survey.id} already moved to {e.actual.value if e.actual else 'unknown'}")
                continue
            summary.sent += 1

        logger.info(f"Survey dispatch: {summary.sent} sent, {summary.failed} failed")
        return summary

    def submit(
        self,
        token: str,
        doctor_rating: int,
        punctuality_rating: int,
        clarity_rating: int,
        treatment_rating: int,
        comment: Optional[str] = None
    ) -> SurveyResponseRecord:
        ratings = dict(zip(RATING_FIELDS, (doctor_rating, punctuality_rating, clarity_rating, treatment_rating)))
        invalid = {name: value for name, value in ratings.items() if not 1 <= value <= 5}
        if invalid:
            raise InvalidRatingError("Ratings must be between 1 and 5", details=invalid)

        survey = self.repository.get_survey_by_token(token)
        if not survey:
            raise SurveyNotFoundError("Survey not found for this token")
        if survey.status == SurveyStatus.COMPLETED:
            raise TokenAlreadyUsedError("This survey has already been answered", details={"survey_id": survey.id})

        average = round(sum(ratings.values()) / len(ratings), 2)
        has_alert = average < self.config.survey_alert_threshold

        with self.repository.transaction():
            try:
                self.repository.update_survey(
                    survey.id,
                    {"status": SurveyStatus.COMPLETED, "completed_at": self.clock.now()},
                    (SurveyStatus.PENDING, SurveyStatus.SENT)
                )
            except PreconditionFailedError:
                raise TokenAlreadyUsedError("This survey has already been answered", details={"survey_id": survey.id})
            response = self.repository.insert_survey_response(
                survey.id,
                dict(ratings, comment=comment, average_score=average, has_admin_alert=has_alert)
            )

        if has_alert:
            logger.warning(
                f"Low satisfaction score {average} for doctor {survey.doctor_id} "
                f"(appointment {survey.appointment_id})"
            )
        return response
