"""Invoice annotator: review and correct machine-extracted invoice data."""


def annotator_main(*args, **kwargs):
    from .app import main

    return main(*args, **kwargs)


def normalize_main(*args, **kwargs):
    from .normalizer import main

    return main(*args, **kwargs)


def export_xml_main(*args, **kwargs):
    from .cds_xml import main

    return main(*args, **kwargs)


__all__ = ["annotator_main", "export_xml_main", "normalize_main"]
