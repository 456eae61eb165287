from enum import StrEnum, auto


class UpdateMethod(StrEnum):
    """ Describes the method in which a document is written. """
    INSERT = auto()
    REPLACE = auto()
