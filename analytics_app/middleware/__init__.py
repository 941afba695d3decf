from .request_identity import REQUEST_ID_HEADER, init_request_identity_middleware

__all__ = ["REQUEST_ID_HEADER", "init_request_identity_middleware"]
