"""Error type shared by sections, pipes and the scheduler."""


class SectionError(Exception):
    """Raised when a section, pipe or runtime operation fails."""