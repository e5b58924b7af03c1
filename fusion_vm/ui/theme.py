"""Theme and styling for terminal output."""

from enum import Enum

from blessed import Terminal

from fusion_vm.config import COLORS


class Theme:
    """Theme manager for consistent styling."""

    def __init__(self, term: Terminal | None = None) -> None:
        self.term = term or Terminal()

    def ownership(self, value: Enum) -> str:
        """Color an ownership or power value (host, guest, running, ...)."""
        return self.colored(str(value.value), COLORS.get(str(value.value), "white"))

    def colored(self, text: str, color: str) -> str:
        """Apply color to text."""
        color_func = getattr(self.term, color, self.term.white)
        return str(color_func(text))

    def header(self, text: str) -> str:
        """Style header text."""
        return str(self.term.bold_cyan(text))

    def error(self, text: str) -> str:
        """Style error text."""
        return str(self.term.bold_red(text))

    def success(self, text: str) -> str:
        """Style success text."""
        return str(self.term.bold_green(text))

    def warning(self, text: str) -> str:
        """Style warning text."""
        return str(self.term.bold_yellow(text))

    def dim(self, text: str) -> str:
        """Style dimmed text."""
        try:
            return str(self.term.dim(text))
        except (TypeError, AttributeError):
            pass
        # Fallback to darker color if dim not supported
        try:
            return str(self.term.bright_black(text))
        except (TypeError, AttributeError):
            return text

    def field(self, label: str, value: str, width: int = 14) -> str:
        """Format an aligned ``label: value`` line."""
        return f"  {self.dim(f'{label}:'.ljust(width))} {value}"
