from .errors import FormDataError, FormDataLimitExceeded, FormDataParseError
from .parser import FileUploadHandler, MultipartPart, buffer_upload, is_multipart, parse_form_data
from .upload import FileUpload

__all__ = [
    "FileUpload",
    "FileUploadHandler",
    "FormDataError",
    "FormDataLimitExceeded",
    "FormDataParseError",
    "MultipartPart",
    "buffer_upload",
    "is_multipart",
    "parse_form_data",
]
