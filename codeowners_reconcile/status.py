class ExitCodes:
    SUCCESS = 0
    ERROR = 1
    NOT_FOUND = 4
