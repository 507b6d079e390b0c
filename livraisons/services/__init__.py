"""
Services de l'application
Logique métier: périodes, périmètres, statistiques, tarifs, historique
"""
