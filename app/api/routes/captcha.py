"""
Image captcha routes. The challenge payload never carries the answer.
"""
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_captcha_verifier
from app.captcha.models import ChallengePublic
from app.captcha.verifier import CaptchaVerifier
from app.core.errors import UpstreamUnavailableError
from app.schemas.captcha import VerifyRequest, VerifyResponse

router = APIRouter(prefix="/api/captcha", tags=["captcha"])


@router.get("/image-challenge", response_model=ChallengePublic)
def image_challenge(verifier: CaptchaVerifier = Depends(get_captcha_verifier)):
    try:
        return verifier.issue_challenge()
    except UpstreamUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Captcha temporarily unavailable",
        )


@router.post("/image-verify", response_model=VerifyResponse)
def image_verify(body: VerifyRequest, verifier: CaptchaVerifier = Depends(get_captcha_verifier)):
    """Always 200: {success}. A failed answer means the client fetches a new challenge."""
    result = verifier.verify(body.challenge_id, body.selected_indices)
    return VerifyResponse(success=result.success)
