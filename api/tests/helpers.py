"""Shared test helpers."""

import cv2
import numpy as np
from PIL import Image


def decode_qr(image: Image.Image) -> str:
    """Decode a QR image with OpenCV after adding a generous quiet zone.

    OpenCV's detector is independent of the encoder under test.
    """
    array = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
    padded = cv2.copyMakeBorder(array, 60, 60, 60, 60, cv2.BORDER_CONSTANT, value=255)
    data, _, _ = cv2.QRCodeDetector().detectAndDecode(padded)
    return data
