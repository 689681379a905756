from dataclasses import dataclass

from sqlitedata.exceptions import ValidationError

from libb import ConfigOptions, scriptname

__all__ = [
    'DatabaseOptions',
]


@dataclass
class DatabaseOptions(ConfigOptions):
    """Options

    database: path of the SQLite data file (or `:memory:`)
    foreign_keys: enforce foreign key constraints on every handle (default: True)
    timeout: seconds to wait on a locked database before failing (default: 5)
    detect_types: parse declared `date`/`datetime` columns on read (default: False)

    Connection retry options:
    - retry_attempts: attempts to open a handle on a busy database (default: 3)
    - retry_delay: initial delay between attempts in seconds (default: 0.1)
    """
    database: str = None
    foreign_keys: bool = True
    timeout: float = 5.0
    detect_types: bool = False
    appname: str = None
    retry_attempts: int = 3
    retry_delay: float = 0.1

    def __post_init__(self):
        if not self.database:
            raise ValidationError('database must be set to a data file path')
        if self.retry_attempts < 1:
            raise ValidationError('retry_attempts must be at least 1')
        self.appname = self.appname or scriptname() or 'python_console'

    @property
    def is_memory(self) -> bool:
        return self.database == ':memory:'
