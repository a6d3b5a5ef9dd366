"""
Anti-automation layer: image challenges, single-use grading and clearances.
Grading (verifier) and storage (store) are separate; the contract is the Challenge model.
"""
from app.captcha.models import Challenge, ChallengePublic, VerifyResult
from app.captcha.store import ChallengeStore, MemoryChallengeStore, RedisChallengeStore
from app.captcha.verifier import CaptchaVerifier, build_challenge

__all__ = [
    "Challenge",
    "ChallengePublic",
    "VerifyResult",
    "ChallengeStore",
    "MemoryChallengeStore",
    "RedisChallengeStore",
    "CaptchaVerifier",
    "build_challenge",
]
