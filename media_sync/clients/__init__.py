# Client packages
from .s3_manager import S3Manager, translate_error

__all__ = ['S3Manager', 'translate_error']
