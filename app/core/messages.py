# app/core/messages.py
# User-facing message catalog. Keep texts stable: clients match on them.

CERT_ISSUED = "Certification issued successfully"
BATCH_ISSUED = "Batch of Certifications issued successfully"
BATCH_PARTIAL = "Batch issued on ledger, some documents failed to finalize"
CERT_RENEWED = "Certification renewed successfully"
CERT_PROMOTED = "Batch certification renewed as a single certification"
STATUS_UPDATED = "Certification status updated"
BATCH_RENEWED = "Batch renewed successfully"
BATCH_STATUS_UPDATED = "Batch status updated"

CERT_ALREADY_ISSUED = "Certification already issued"
CERT_NOT_FOUND = "Certification doesn't exist"
CERT_EXPIRED = "Certification has expired"
CERT_REVOKED = "Certification has revoked"
CERT_VALID = "Certification is valid"
CERT_NOT_CONFIRMED = "Unable to confirm certification on the ledger"
CERT_NO_EXPIRATION = "Renewal not possible on a certification without expiration"
DUPLICATE_IN_BATCH = "Duplicate certification number in batch"
EMPTY_BATCH = "Batch must contain at least one record"
INVALID_DATES = "Grant date must not be later than expiration date"
INVALID_EXPIRATION = "Expiration date must be at least {days} days in the future"
EXPIRATION_MUST_BE_GREATER = "New expiration date must be later than current expiration"
STATUS_ALREADY_EXISTS = "Certification already holds the requested status"
STATUS_NOT_ALLOWED = "Only revoke and reactivate status updates are allowed"
REACTIVATION_NOT_POSSIBLE = "Reactivation is only possible on a revoked certification"
NOT_POSSIBLE_ON_REVOKED = "Operation not possible on revoked / expired certification"
BAD_RENEW_STATUS = "Certification is not in a renewable state on the ledger"

INVALID_BATCH = "Invalid batch id"
BATCH_EXPIRED = "Batch has expired"
BATCH_REVOKED = "Operation not possible on revoked batch"
BATCH_NO_EXPIRATION = "Operation not possible on a batch without expiration"

OPS_RESTRICTED = "Operation restricted by the Blockchain"
ISSUER_UNAUTHORIZED = "Unauthorized Issuer to perform operation on Blockchain"
FAILED_OPS_AT_LEDGER = "Failed to perform operation at Blockchain / Please Try again ..."
LEDGER_TIMEOUT = "Blockchain did not answer in time / Please Try again ..."
LEDGER_NONCE = "Transaction was replaced or its nonce expired"

NO_ENTRY_MATCH = "No matching entry found for document"
NO_ARTIFACT = "No source document supplied for record"
INVALID_PDF = "Invalid PDF document"
INVALID_ARTIFACT_PATH = "Source document must be a file in the upload folder"
IMAGE_ERROR = "Unable to rasterize certificate image"
DB_FAILED = "Ledger write succeeded but local storage failed; manual reconciliation required"
INTERNAL_ERROR = "Internal server error"
PAYLOAD_ONLY = "No local artifact reference exists; validity derived from link payload only"
