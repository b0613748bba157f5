from __future__ import annotations

import base64
import io
from collections.abc import Sequence
from urllib.parse import quote

import qrcode
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import BACKEND_DIR
from models.room_code import RoomCode


TEMPLATES_DIR = BACKEND_DIR / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def login_url(origin: str, code: str) -> str:
    return f"{origin.rstrip('/')}/login?code={quote(code, safe='')}"


def render_qr_png(data: str, *, box_size: int = 10, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def qr_data_url(data: str, *, box_size: int = 10, border: int = 2) -> str:
    png = render_qr_png(data, box_size=box_size, border=border)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def render_print_card(room_code: RoomCode, *, origin: str) -> str:
    """Printable page for one room; prints itself on load."""

    url = login_url(origin, room_code.code)
    return _env.get_template("print_card.html").render(
        room_number=room_code.room_number,
        qr_src=qr_data_url(url),
        login_url=url,
    )


def render_print_sheet(room_codes: Sequence[RoomCode], *, origin: str) -> str:
    """Printable grid of cards for all given rooms."""

    cards = [
        {
            "room_number": rc.room_number,
            "qr_src": qr_data_url(login_url(origin, rc.code), box_size=8),
        }
        for rc in room_codes
    ]
    return _env.get_template("print_sheet.html").render(cards=cards)


def render_login_failed(*, message: str, retry_url: str) -> str:
    return _env.get_template("login_failed.html").render(message=message, retry_url=retry_url)
