"""User-facing localized messages. French is the default, English the alternative."""

_MESSAGES: dict[str, dict[str, str]] = {
    "moderation.warning": {
        "fr": (
            "⚠️ Avertissement : Contenu inapproprié détecté. Il vous reste {remaining} "
            "avertissement(s) avant suspension de votre compte."
        ),
        "en": (
            "⚠️ Warning: Inappropriate content detected. You have {remaining} warning(s) "
            "remaining before account suspension."
        ),
    },
    "moderation.cooldown": {
        "fr": (
            "🚫 Votre compte est temporairement suspendu pour {hours}h suite à des violations "
            "répétées. Dernier avertissement avant bannissement définitif."
        ),
        "en": (
            "🚫 Your account is temporarily suspended for {hours}h due to repeated violations. "
            "This is your final warning before permanent ban."
        ),
    },
    "moderation.ban": {
        "fr": (
            "🚫 Votre compte a été définitivement suspendu pour violations répétées des "
            "conditions d'utilisation. Contactez le support si vous pensez qu'il s'agit "
            "d'une erreur."
        ),
        "en": (
            "🚫 Your account has been permanently suspended for repeated violations of the "
            "terms of service. Contact support if you believe this is an error."
        ),
    },
    "moderation.deleting": {
        "fr": "Votre compte est en cours de suppression.",
        "en": "Account is being deleted.",
    },
    "nsfw.rejected": {
        "fr": (
            "⚠️ Contenu inapproprié détecté. Votre image a été rejetée car elle contient du "
            "contenu interdit ({category}). Cette violation a été enregistrée."
        ),
        "en": (
            "⚠️ Inappropriate content detected. Your image was rejected because it contains "
            "prohibited content ({category}). This violation has been recorded."
        ),
    },
    "credits.insufficient": {
        "fr": "Crédits insuffisants : {required} requis, {available} disponible(s).",
        "en": "Insufficient credits: {required} required, {available} available.",
    },
    "job.completed": {
        "fr": "✨ Ta photo est prête ! Clique pour voir le résultat.",
        "en": "✨ Your photo is ready! Click to see the result.",
    },
    "job.refunded": {
        "fr": "Désolé, le réseau est compliqué. Ton crédit a été remboursé. 🙏",
        "en": "Sorry, the network is having issues. Your credit has been refunded. 🙏",
    },
}


def get_message(key: str, language: str = "fr", **params: object) -> str:
    """Render a message in the requested language, falling back to French.

    Raises:
        KeyError: If the message key is unknown
    """
    variants = _MESSAGES[key]
    template = variants.get(language) or variants["fr"]
    return template.format(**params)
