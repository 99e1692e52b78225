from fastapi import APIRouter, Depends, status
from clinic_scheduler.schemas.survey import SurveySubmission
from clinic_scheduler.services.scheduling_service import SchedulingService
from clinic_scheduler.routes.dependencies import get_scheduling_service
from clinic_scheduler.utils.response import APIResponse

router = APIRouter(prefix="/surveys", tags=["Surveys"])

@router.post("/generate", summary="Create surveys for completed appointments")
def generate_surveys(service: SchedulingService = Depends(get_scheduling_service)):
    surveys = service.generate_surveys()
    return APIResponse.success(surveys, message=f"{len(surveys)} surveys created")

@router.post("/submit", status_code=status.HTTP_201_CREATED, summary="Submit a satisfaction survey")
def submit_survey(submission: SurveySubmission, service: SchedulingService = Depends(get_scheduling_service)):
    """Ratings go from 1 to 5; the token can be used once"""
    response = service.submit_survey(
        submission.token,
        submission.doctor_rating,
        submission.punctuality_rating,
        submission.clarity_rating,
        submission.treatment_rating,
        comment=submission.comment
    )
    return APIResponse.created(response, message="Thank you for your feedback")
