from cloud_upload.adapters.base import StorageAdapter
from cloud_upload.adapters.cos import COSStorageAdapter
from cloud_upload.adapters.factory import create_storage_adapter
from cloud_upload.adapters.oss import OSSStorageAdapter
from cloud_upload.adapters.s3 import S3StorageAdapter
