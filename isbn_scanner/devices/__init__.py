from isbn_scanner.devices.camera import Camera, CameraStream, is_secure_context

__all__ = ["Camera", "CameraStream", "is_secure_context"]
