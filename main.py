import asyncio
import logging
import mimetypes
import sys
import uuid
from pathlib import Path

from config.postgres import PostgresConfig
from config.settings import PortalSettings
from persistence.session_storage import MemorySessionStorage, PostgresSessionStorage
from registration.controller import StagedRegistrationController
from registration.state import Attachment, FlowState, RegistrationForm
from registration.timer import AsyncioScheduler


def open_storage(settings: PortalSettings, session_id: str):
    if settings.draft_backend == "postgres":
        pg = PostgresConfig.from_env()
        storage = PostgresSessionStorage(pg.connect(), session_id, table=pg.storage_table)
        storage.setup()
        return storage
    return MemorySessionStorage()


def load_picture(path: str) -> Attachment:
    p = Path(path)
    content_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
    return Attachment(filename=p.name, content_type=content_type, data=p.read_bytes())


async def run(picture_path: str = None):
    loop = asyncio.get_running_loop()
    settings = PortalSettings.from_env()
    storage = open_storage(settings, session_id=f"demo_{uuid.uuid4().hex[:8]}")

    controller = StagedRegistrationController.from_settings(
        settings,
        AsyncioScheduler(loop),
        storage=storage,
        on_change=lambda old, new: print(f"  {old.value} -> {new.value}"),
    )

    async def call(fn, *args):
        # controller calls block on HTTP; keep the loop free for the countdown
        return await loop.run_in_executor(None, fn, *args)

    email = await call(input, "Email: ")
    form = RegistrationForm(
        name="Jane Doe",
        email=email.strip(),
        password="secret1",
        confirm_password="secret1",
        phone_number="15551234567",
        country="US",
        travel_preferences=["beach", "hiking"],
        profile_picture=load_picture(picture_path) if picture_path else None,
        agree_to_terms=True,
    )

    state = await call(controller.submit_form, form)
    if state is not FlowState.AWAITING_CODE:
        print("could not send code:", controller.message, controller.field_errors)
        return

    try:
        while controller.state is FlowState.AWAITING_CODE:
            answer = await call(
                input, f"Code (or 'r' to resend, resend in {controller.countdown}s): "
            )
            answer = answer.strip()
            if answer == "r":
                if controller.can_resend:
                    resent = await call(controller.resend)
                    print("resent" if resent else f"resend failed: {controller.message}")
                else:
                    available = controller.challenge.resend_available_at.astimezone()
                    print(f"resend available at {available:%H:%M:%S}")
                continue
            controller.code.paste(answer)
            outcome = await call(controller.verify)
            if outcome is None:
                print(controller.message)
    finally:
        controller.teardown()

    print("outcome:", controller.outcome.kind.value if controller.outcome else None)
    if controller.message:
        print("message:", controller.message)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else None))


if __name__ == "__main__":
    main()
