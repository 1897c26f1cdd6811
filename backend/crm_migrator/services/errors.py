class RowValidationError(ValueError):
    """One source row cannot be turned into an entity write. The run continues."""


class StoreUnavailableError(RuntimeError):
    """The entity store cannot be reached. The run stops and is marked failed."""


class StructuralError(ValueError):
    """A sheet cannot be processed as a whole. Only that sheet is skipped."""


class EmptySheetError(StructuralError):
    pass


class NoUsableColumnsError(StructuralError):
    pass


class UnsupportedWorkbookError(ValueError):
    pass


class MigrationConflictError(RuntimeError):
    pass


class NoActiveMigrationError(LookupError):
    pass
