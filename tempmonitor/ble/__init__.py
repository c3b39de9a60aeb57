"""BLE advertisement decoding, duplicate suppression and scan control."""
