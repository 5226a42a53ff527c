class UploadValidationError(Exception):
    """Raised when an uploaded file fails validation (e.g., wrong format, missing sheet)."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class DataProcessingError(Exception):
    """Raised when something goes wrong in a processing pipeline."""
    def __init__(self, message):
        super().__init__(message)
        self.message = message


class CategoryCycleError(DataProcessingError):
    """Raised when a category would become its own ancestor."""
    def __init__(self, category_id, ancestor_ids):
        chain = " > ".join(list(ancestor_ids) + [category_id])
        super().__init__(f"Category '{category_id}' appears in its own ancestor chain: {chain}")
        self.category_id = category_id
        self.ancestor_ids = list(ancestor_ids)
