from cloud_upload.signers.base import RequestSigner, uri_encode
from cloud_upload.signers.cos import COSSigner
from cloud_upload.signers.oss import OSSSigner
from cloud_upload.signers.sigv4 import SigV4Signer, derive_signing_key
