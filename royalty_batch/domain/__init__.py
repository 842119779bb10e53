"""Pure batch DTOs."""
