import pandas as pd

from .attributes.devis import ATTESTATION_ATTRIBUTES, DEVIS_ATTRIBUTES

# Mapping entre le type de document et son dictionnaire d'attributs
DOC_TYPE_ATTRIBUTES_MAPPING = {
    "devis": DEVIS_ATTRIBUTES,
    "attestation": ATTESTATION_ATTRIBUTES,
}


def build_attributes_dataframe(mapping: dict = DOC_TYPE_ATTRIBUTES_MAPPING) -> pd.DataFrame:
    rows = []
    for doc_type, attributes_dict in mapping.items():
        for attr_name, attr_def in attributes_dict.items():
            rows.append(
                {
                    "attribut": attr_name,
                    "consigne": attr_def.get("consigne", ""),
                    "output_field": attr_def.get("output_field", attr_name),
                    "schema": attr_def.get("schema", ""),
                    "type_attachments": [doc_type],
                }
            )
    return pd.DataFrame(rows)


ATTRIBUTES = build_attributes_dataframe()


def select_attr(df_attributes, doc_type):
    """
    Sélectionne les lignes du DataFrame ATTRIBUTES correspondant à un type de document donné.
    Args:
        df_attributes (pd.DataFrame): DataFrame des attributs (avec colonne 'type_attachments')
        doc_type (str): Type de document à filtrer ("devis" ou "attestation")
    Returns:
        pd.DataFrame: Sous-ensemble du DataFrame avec les attributs du type demandé
    """
    return df_attributes[df_attributes["type_attachments"].apply(lambda types: doc_type in types)]
