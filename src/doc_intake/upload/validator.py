"""File validation for batch document uploads.

- File type validation against the accepted MIME types
- File size validation against the configured maximum
- Batch count validation against the configured maximum
"""

from dataclasses import dataclass, field
from typing import Optional

from doc_intake.config import MEGABYTE, FileUploadOptions
from doc_intake.core import ValidationError, get_logger
from doc_intake.upload.models import FileRejection, SourceFile, ValidationResult

logger = get_logger(__name__)

REJECTION_CODES = {"type": 415, "size": 413}


@dataclass
class SubmissionValidation:
    """Outcome of validating one submission of candidate files."""

    valid_files: list[SourceFile] = field(default_factory=list)
    rejections: list[FileRejection] = field(default_factory=list)
    count_exceeded: bool = False


def _megabytes(size_bytes: int) -> str:
    return f"{size_bytes / MEGABYTE:.1f}MB"


class FileValidator:
    """Validates candidate files for type, size and batch count.

    Rejected files never reach the record store, so they never reach the
    network either.
    """

    def __init__(self, options: Optional[FileUploadOptions] = None):
        self.options = options or FileUploadOptions()

    def validate(self, source: SourceFile) -> ValidationResult:
        """Validate a single candidate file.

        Args:
            source: Candidate file handle

        Returns:
            ValidationResult with validation status and details
        """
        content_type = (source.content_type or "").lower()

        if content_type not in self.options.accepted_file_types:
            return ValidationResult(
                valid=False,
                error_code=415,
                error_message=(
                    f"File type {content_type or 'unknown'} is not supported. "
                    f"Accepted types: {', '.join(self.options.accepted_file_types)}."
                ),
                content_type=content_type,
                file_size=source.size,
            )

        if source.size > self.options.max_size_bytes:
            return ValidationResult(
                valid=False,
                error_code=413,
                error_message=(
                    f"File size {_megabytes(source.size)} exceeds the maximum allowed "
                    f"size of {_megabytes(self.options.max_size_bytes)}."
                ),
                content_type=content_type,
                file_size=source.size,
            )

        return ValidationResult(
            valid=True,
            content_type=content_type,
            file_size=source.size,
        )

    def ensure_valid(self, source: SourceFile) -> ValidationResult:
        """Validate a single file, raising on failure.

        Raises:
            ValidationError: If the file breaks the type or size rule
        """
        result = self.validate(source)
        if not result.valid:
            raise ValidationError(
                result.error_message or "Validation failed",
                file_name=source.name,
                validation_type="type" if result.error_code == REJECTION_CODES["type"] else "size",
            )
        return result

    def check_count(self, submitted: int, existing_count: int) -> Optional[str]:
        """Check the batch-level file count.

        Args:
            submitted: Number of files in the new submission
            existing_count: Number of records already registered

        Returns:
            Error message if the submission breaks the count rule, None otherwise
        """
        if submitted > 1 and not self.options.allow_multiple:
            return "Only one file can be uploaded at a time."
        if existing_count + submitted > self.options.max_files:
            return f"Cannot upload more than {self.options.max_files} files at once."
        return None

    def validate_submission(
        self,
        sources: list[SourceFile],
        existing_count: int = 0,
    ) -> SubmissionValidation:
        """Validate a whole submission.

        A count violation rejects the submission as one aggregate error that
        references the first file, and no per-file checks run. Otherwise each
        file is judged on its own.

        Args:
            sources: Candidate files in submission order
            existing_count: Number of records already registered

        Returns:
            SubmissionValidation listing accepted files and rejections
        """
        result = SubmissionValidation()
        if not sources:
            return result

        count_error = self.check_count(len(sources), existing_count)
        if count_error:
            logger.warning(
                "submission_rejected",
                submitted=len(sources),
                existing=existing_count,
                max_files=self.options.max_files,
                reason=count_error,
            )
            result.count_exceeded = True
            result.rejections.append(
                FileRejection(source=sources[0], error=count_error, error_code=409)
            )
            return result

        for source in sources:
            try:
                self.ensure_valid(source)
            except ValidationError as e:
                error_code = REJECTION_CODES.get(e.validation_type)
                logger.info(
                    "file_rejected",
                    file_name=source.name,
                    content_type=source.content_type,
                    file_size=source.size,
                    validation_type=e.validation_type,
                    error_code=error_code,
                )
                result.rejections.append(
                    FileRejection(source=source, error=e.message, error_code=error_code)
                )
            else:
                result.valid_files.append(source)

        return result
