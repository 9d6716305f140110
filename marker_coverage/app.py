import logging
import cv2
import numpy as np
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Params
from .core import detect

logger = logging.getLogger(__name__)

app = FastAPI(title="Marker Coverage API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# shared by every request; Params is frozen
PARAMS = Params()


def decode_upload_to_bgr(upload: UploadFile) -> np.ndarray:
    data = upload.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file.")
    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise HTTPException(status_code=400, detail="Could not decode image. Provide a valid JPG/PNG.")
    return img


@app.post("/detect")
def detect_marker(file: UploadFile = File(...)):
    img = decode_upload_to_bgr(file)
    logger.info("detecting marker in %s (%dx%d)", file.filename, img.shape[1], img.shape[0])
    out = detect(img, PARAMS)
    return JSONResponse(out.to_dict())
