"""Parser strategy selection."""

from enum import Enum

from stmtflow.domain.entities import BankMappingConfig, FileType
from stmtflow.domain.errors import UnsupportedFormatError


class ParserStrategy(str, Enum):
    """Closed set of parser variants."""

    STRUCTURED = "structured"
    TEXT_EXTRACTION = "text_extraction"


_STRATEGIES = {
    FileType.CSV: ParserStrategy.STRUCTURED,
    FileType.OFX: ParserStrategy.STRUCTURED,
    FileType.QIF: ParserStrategy.STRUCTURED,
    FileType.PDF: ParserStrategy.TEXT_EXTRACTION,
}


class FormatDispatcher:
    """Select a parser strategy from a file type and mapping config."""

    def select(self, file_type: "str | FileType", mapping: BankMappingConfig) -> ParserStrategy:
        """Return the parser strategy for a statement.

        Raises:
            UnsupportedFormatError: If the file type is unknown or the
                mapping was written for a different file type
        """
        ftype = FileType.parse(file_type)
        if mapping.file_type != ftype:
            raise UnsupportedFormatError(
                f"Mapping for bank '{mapping.bank_id}' describes {mapping.file_type.value} "
                f"files, not {ftype.value}"
            )
        return _STRATEGIES[ftype]
