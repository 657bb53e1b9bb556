"""Operations API."""
