from pydantic import EmailStr

from ..models import StorefrontModel
from ..validation import RequestSchema


class ForgotPasswordRequest(RequestSchema):
    email: EmailStr

    def normalize(self) -> "ForgotPasswordRequest":
        return self.model_copy(update={"email": self.email.strip().lower()})


class ForgotPasswordResult(StorefrontModel):
    message: str = (
        "If an account exists for this email, password reset instructions "
        "have been sent"
    )
