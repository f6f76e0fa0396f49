from app.services.buffer.manager import ContentBufferService, FillResult

__all__ = ["ContentBufferService", "FillResult"]
