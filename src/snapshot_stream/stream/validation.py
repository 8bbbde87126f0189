"""
Frame Validation
================

Cheap sanity filter for fetched snapshot payloads.

This is not a decoder. It only checks the JPEG start-of-image and
end-of-image markers and rejects payloads too small to be a real camera
frame (placeholder or truncated images). Corrupt data between the markers
is not detected.
"""

SOI_MARKER = b"\xff\xd8"
EOI_MARKER = b"\xff\xd9"

# Shortest buffer that can hold both markers and a header
MIN_STRUCTURAL_SIZE = 10

# Real camera frames are never this small
MIN_FRAME_SIZE = 1000


def is_valid_frame(data: bytes) -> bool:
    """
    Check whether a payload looks like a complete JPEG frame.
    
    Args:
        data: Response body
        
    Returns:
        True if the payload is large enough and starts with FF D8 and
        ends with FF D9.
    """
    if len(data) < MIN_STRUCTURAL_SIZE or len(data) < MIN_FRAME_SIZE:
        return False
    return data[:2] == SOI_MARKER and data[-2:] == EOI_MARKER
