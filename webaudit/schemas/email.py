"""Web Audit API — Email and Notify-Me Schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class SendEmailRequest(BaseModel):
    """
    Either a custom message (`to`, `subject`, `html`) or a templated one
    (`email`, `type` and the fields that template needs).
    """
    email: Optional[str] = None
    to: Optional[str] = None
    subject: Optional[str] = None
    html: Optional[str] = None
    text: Optional[str] = None
    type: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    confirmation_url: Optional[str] = Field(default=None, alias="confirmationUrl")
    reset_url: Optional[str] = Field(default=None, alias="resetUrl")
    plan_name: Optional[str] = Field(default=None, alias="planName")
    expiry_date: Optional[str] = Field(default=None, alias="expiryDate")

    model_config = {"populate_by_name": True}


class SendEmailResponse(BaseModel):
    success: bool = True
    message: str
    message_id: Optional[str] = Field(default=None, serialization_alias="messageId")


class NotifyMeRequest(BaseModel):
    email: Optional[str] = None
    source: str = "homepage"


class NotifyMeResponse(BaseModel):
    success: bool = True
    message: str
    id: Optional[str] = None
    already_subscribed: Optional[bool] = Field(default=None, serialization_alias="alreadySubscribed")
    reactivated: Optional[bool] = None
