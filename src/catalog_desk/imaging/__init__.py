from .compress import (
    CompressedImage,
    SizeEstimate,
    code_from_filename,
    compress,
    placeholder_image,
    target_budget,
)

__all__ = [
    "CompressedImage",
    "SizeEstimate",
    "code_from_filename",
    "compress",
    "placeholder_image",
    "target_budget",
]
