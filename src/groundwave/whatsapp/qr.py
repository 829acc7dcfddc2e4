"""QR code images for device pairing."""

import base64
import io

import qrcode
from PIL import Image

QR_SIZE = 256


def render_qr_base64(payload: str, size: int = QR_SIZE) -> str:
    """Encode ``payload`` as a medium error-correction QR PNG, base64 encoded."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=4)
    qr.add_data(payload)
    qr.make(fit=True)

    image = qr.make_image(fill_color="black", back_color="white").get_image()
    image = image.convert("L").resize((size, size), Image.Resampling.NEAREST)

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
