from fastapi import APIRouter, File, HTTPException, UploadFile, status
from loguru import logger

router = APIRouter()

MAX_IMAGE_BYTES = 10 * 1024 * 1024

# Placeholder output until real label recognition exists
DUMMY_LABELS = ["cat", "animal", "pet", "feline"]
DUMMY_CONFIDENCE = 0.92


@router.post("/process-image")
async def process_image(image: UploadFile = File(...)):
    """Accept an image upload and return canned labels."""
    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must be an image",
        )

    data = await image.read()
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File size must be less than 10MB",
        )

    logger.info("Image received: {} ({} bytes)", image.filename, len(data))
    return {
        "labels": DUMMY_LABELS,
        "confidence": DUMMY_CONFIDENCE,
        "filename": image.filename,
        "size": len(data),
        "type": content_type,
    }
