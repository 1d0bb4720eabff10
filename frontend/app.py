"""
Interactive two-step login client.

Runs the password step against the backend, then opens an OpenCV window
for the face step. Capture is only possible while exactly one face is in
view.

Keys:
    SPACE  capture and submit
    r      retry after a failed attempt
    q      go back

Run with:
    python -m frontend.app login --email alice@example.com --password secret
    python -m frontend.app register --username alice --email alice@example.com --password secret
    python -m frontend.app demo --mock
    python -m frontend.app cameras
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import Any, Dict, Optional

import cv2
import numpy as np

from core.auth_session import AuthSession, Redirect, SessionIdentity
from core.config import configure_logging, get_config
from core.errors import FaceAuthError
from core.media_devices import get_available_cameras
from core.presence_gate import DisplayTicker
from core.ui_overlay import draw_face_boxes, draw_face_guide, draw_result_banner, draw_status_bar
from core.verification_session import AttemptState, EnrollmentSession, VerificationSession
from frontend.api_client import APIClient, ConnectionMode
from frontend.components.face_camera import FaceCamera
from frontend.components.verification_panel import (
    EnrollmentPanel,
    VerificationPanel,
    validate_registration,
)

logger = logging.getLogger(__name__)

WINDOW_NAME = "Face Verification"
KEY_HINT = "SPACE capture | R retry | Q back"


class FaceScreen:
    """One camera screen driving an attempt session until it navigates away."""

    def __init__(self, camera: FaceCamera, session, panel, back: Redirect):
        self.camera = camera
        self.session = session
        self.panel = panel
        self.back = back
        self.redirect: Optional[Redirect] = None
        self._submit_task: Optional[asyncio.Task] = None

        session.on_success = self._on_success

    def _on_success(self, session) -> None:
        self.redirect = self.panel.complete(session)

    async def run(self, fps: float = 30.0) -> Redirect:
        ticker = DisplayTicker(fps)
        try:
            while self.redirect is None:
                await ticker.next_tick()

                if not self.camera.pump.is_ready:
                    error = self.camera.pump.error
                    print(error.user_message if error else "Camera stopped")
                    return self.back

                cv2.imshow(WINDOW_NAME, self.render())
                key = cv2.waitKey(1) & 0xFF

                if key == ord(" "):
                    self._capture()
                elif key == ord("r") and self.session.attempt_state == AttemptState.FAILURE:
                    self.session.retry()
                elif key == ord("q"):
                    return self._leave()
            return self.redirect
        finally:
            if self._submit_task is not None and not self._submit_task.done():
                self._submit_task.cancel()
            await self.session.close()

    def _capture(self) -> None:
        if self.session.attempt_state != AttemptState.IDLE:
            return
        image = self.camera.capture()
        if image is None:
            logger.info(f"Capture refused: {self.camera.status_message}")
            return
        self._submit_task = asyncio.create_task(self.session.submit(image))

    def _leave(self) -> Redirect:
        if self.session.attempt_state == AttemptState.FAILURE and hasattr(self.panel, "abandon"):
            return self.panel.abandon()
        return self.back

    def render(self) -> np.ndarray:
        state = self.camera.state
        still = self.session.still_image

        if still is not None and self.session.attempt_state != AttemptState.IDLE:
            display = still.to_frame()
        else:
            display = self.camera.current_frame().copy()
            snapshot = state.snapshot
            draw_face_guide(display, face_detected=state.face_count == 1, message=self.panel.prompt())
            draw_face_boxes(display, snapshot.boxes, single_face=snapshot.face_count == 1)

        draw_status_bar(display, state.status, self.camera.status_message, hint=KEY_HINT)

        message = self.panel.result_message(self.session)
        if message is not None:
            draw_result_banner(display, message.title, message.detail, message.success, message.hint)
        elif self.session.error_message:
            draw_result_banner(display, "Error", self.session.error_message, False)
        return display


async def run_face_step(camera: FaceCamera, session, panel, back: Redirect) -> Redirect:
    try:
        async with camera:
            return await FaceScreen(camera, session, panel, back).run()
    except FaceAuthError as e:
        print(f"Error: {e.user_message}")
        return back
    finally:
        cv2.destroyAllWindows()


def _session_kwargs(config: Dict[str, Any]) -> Dict[str, Any]:
    verification = config.get("verification", {})
    return {
        "success_delay_sec": verification.get("success_delay_sec", 1.5),
        "submit_timeout_sec": verification.get("submit_timeout_sec", 30.0),
    }


# ============================================================
# Flows
# ============================================================

async def login_flow(api: APIClient, auth: AuthSession, config: Dict[str, Any], email: str, password: str) -> Redirect:
    """Password login followed by face verification."""
    result = await api.login(email, password)
    if not result.ok:
        print(f"Login failed: {result.error}")
        return Redirect("/login", {"error": result.error})

    try:
        identity = SessionIdentity.from_login(result.data, email)
    except FaceAuthError as e:
        print(f"Login failed: {e.user_message}")
        return Redirect("/login", {"error": e.user_message})

    auth.begin(identity, result.data.get("token"))

    if not identity.has_face_data:
        print("No face registered for this account. Please complete registration first.")

    camera = FaceCamera(config)
    panel = VerificationPanel(auth)
    session = VerificationSession(api, auth.identity, camera.state, **_session_kwargs(config))
    redirect = await run_face_step(camera, session, panel, back=Redirect("/login"))

    if redirect.path == "/dashboard" and auth.bearer_token:
        profile = await api.get_profile(auth.bearer_token)
        if profile.ok:
            logger.info(f"Loaded profile for {profile.data.username}")
    return redirect


async def register_flow(
    api: APIClient,
    config: Dict[str, Any],
    username: str,
    email: str,
    password: str,
    confirm_password: str,
) -> Redirect:
    """Account creation followed by face enrollment."""
    error = validate_registration(password, confirm_password)
    if error:
        print(error)
        return Redirect("/register", {"error": error})

    result = await api.register(username, email, password)
    if not result.ok:
        print(f"Registration failed: {result.error}")
        return Redirect("/register", {"error": result.error})

    identity = SessionIdentity(user_id=str(result.data["user_id"]), username=username, email=email)

    camera = FaceCamera(config)
    panel = EnrollmentPanel(username)
    session = EnrollmentSession(api, identity, camera.state, **_session_kwargs(config))
    return await run_face_step(camera, session, panel, back=Redirect("/register"))


# ============================================================
# Entry point
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Two-step face verification client")
    parser.add_argument("--mock", action="store_true", help="Use the simulated backend")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in and verify your face")
    login.add_argument("--email", required=True)
    login.add_argument("--password", default=None)

    register = sub.add_parser("register", help="Create an account and enroll your face")
    register.add_argument("--username", required=True)
    register.add_argument("--email", required=True)
    register.add_argument("--password", default=None)
    register.add_argument("--confirm-password", default=None)

    demo = sub.add_parser("demo", help="Register, enroll, then log in (best with --mock)")
    demo.add_argument("--username", default="demo")
    demo.add_argument("--email", default="demo@example.com")
    demo.add_argument("--password", default="demo-password")

    sub.add_parser("cameras", help="List camera device indices OpenCV can open")

    return parser


async def async_main(args: argparse.Namespace) -> int:
    if args.command == "cameras":
        cameras = await asyncio.to_thread(get_available_cameras)
        print(f"Available cameras: {cameras or 'none'}")
        return 0 if cameras else 1

    config = get_config()
    api_config = config.get("api", {})
    auth = AuthSession()

    mode = ConnectionMode.MOCK if args.mock else ConnectionMode(api_config.get("mode", "live"))
    async with APIClient(
        base_url=api_config.get("base_url", "http://localhost:5000/api"),
        mode=mode,
        timeout_sec=api_config.get("timeout_sec", 30.0),
    ) as api:
        try:
            if args.command == "login":
                password = args.password or getpass.getpass("Password: ")
                redirect = await login_flow(api, auth, config, args.email, password)
            elif args.command == "register":
                password = args.password or getpass.getpass("Password: ")
                confirm = args.confirm_password or (password if args.password else getpass.getpass("Confirm password: "))
                redirect = await register_flow(api, config, args.username, args.email, password, confirm)
            else:
                redirect = await register_flow(
                    api, config, args.username, args.email, args.password, args.password
                )
                if redirect.path == "/login":
                    redirect = await login_flow(api, auth, config, args.email, args.password)
        except FaceAuthError as e:
            print(f"Error: {e.user_message}")
            return 1

    print(f"-> {redirect.path} {redirect.state or ''}")
    return 0 if redirect.path == "/dashboard" or (args.command == "register" and redirect.path == "/login") else 1


def main() -> int:
    args = build_parser().parse_args()
    configure_logging(args.log_level)
    return asyncio.run(async_main(args))


if __name__ == "__main__":
    sys.exit(main())
