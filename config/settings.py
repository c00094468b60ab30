import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

load_dotenv()


class PortalSettings(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    api_base_url: str = "http://localhost:9876/api"
    send_code_path: str = "/auth/send-otp"
    verify_code_path: str = "/auth/verify-otp"
    register_path: str = "/tourists/register"

    request_timeout: float = 10.0
    resend_cooldown: int = 60

    draft_namespace: str = "registration"
    draft_backend: Literal["memory", "postgres"] = "memory"
    encryption_key: str

    def url(self, path: str) -> str:
        return self.api_base_url.rstrip("/") + "/" + path.lstrip("/")

    @classmethod
    def from_env(cls) -> "PortalSettings":
        return cls(
            api_base_url=os.getenv("PORTAL_API_URL", "http://localhost:9876/api"),
            send_code_path=os.getenv("PORTAL_SEND_CODE_PATH", "/auth/send-otp"),
            verify_code_path=os.getenv("PORTAL_VERIFY_CODE_PATH", "/auth/verify-otp"),
            register_path=os.getenv("PORTAL_REGISTER_PATH", "/tourists/register"),
            request_timeout=float(os.getenv("PORTAL_REQUEST_TIMEOUT", "10")),
            resend_cooldown=int(os.getenv("PORTAL_RESEND_COOLDOWN", "60")),
            draft_namespace=os.getenv("PORTAL_DRAFT_NAMESPACE", "registration"),
            draft_backend=os.getenv("PORTAL_DRAFT_BACKEND", "memory"),
            encryption_key=os.environ["ENCRYPTION_KEY"],
        )
