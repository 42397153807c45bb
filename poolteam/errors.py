class LeagueError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LeagueError):
    pass


class CapacityExceeded(ValidationError):
    def __init__(self, category: str, used: int, cap: int):
        super().__init__(f"{category.capitalize()} totals exceed {cap}. Currently {used}.")
        self.category = category
        self.used = used
        self.cap = cap


class NotFound(LeagueError):
    status_code = 404


class PermissionDenied(LeagueError):
    status_code = 403


class TransactionConflict(LeagueError):
    status_code = 409


class StandingsError(LeagueError):
    status_code = 502
