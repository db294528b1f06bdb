class DoesNotExist(ValueError):
    pass


class IsObsolete(ValueError):
    pass
