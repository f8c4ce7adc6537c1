class HuntError(Exception):
    """Erreur de base de la chasse."""
    status_code = 500


class ValidationError(HuntError):
    """Champ obligatoire absent ou vide."""
    status_code = 400


class NotFoundError(HuntError):
    """Le cookie de session ne correspond à aucun participant."""
    status_code = 404


class PersistenceError(HuntError):
    """Échec de la base de données, le détail reste dans les logs."""
    status_code = 500
