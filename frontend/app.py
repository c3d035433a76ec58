from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

# app.py
import os

import pandas as pd
import requests
import streamlit as st

from form_helpers import clean_payload, error_detail

st.set_page_config(page_title="CERFA Apprentissage", layout="wide")

BACKEND = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")

ROLE_TITLES = {
    "etudiant": "Formulaire apprenti(e)",
    "entreprise": "Formulaire employeur",
}


def _text(label: str, saved: dict, key: str, **kwargs) -> str:
    return st.text_input(label, value=str(saved.get(key) or ""), **kwargs)


# ------------- Role forms -------------

def student_form(saved: dict) -> dict:
    apprenti = saved.get("apprenti") or {}
    adresse = apprenti.get("adresse") or {}
    formation = saved.get("formation") or {}

    st.subheader("Identité")
    c1, c2 = st.columns(2)
    nom = _text("Nom de naissance", apprenti, "nom", key="a_nom")
    prenom = _text("Prénom", apprenti, "prenom", key="a_prenom")
    date_naissance = c1.text_input("Date de naissance (JJ/MM/AAAA)", value=apprenti.get("date_naissance", ""))
    nir = c2.text_input("N° de sécurité sociale", value=apprenti.get("nir", ""))
    sexe = st.radio("Sexe", ["M", "F"], horizontal=True, index=0 if apprenti.get("sexe_masculin") else 1)
    departement = c1.text_input("Département de naissance", value=apprenti.get("departement_naissance", ""))
    commune_naissance = c2.text_input("Commune de naissance", value=apprenti.get("commune_naissance", ""))
    nationalite = c1.text_input("Nationalité", value=apprenti.get("nationalite", ""))
    regime_social = c2.text_input("Régime social", value=apprenti.get("regime_social", ""))
    handicap = st.checkbox("Déclare bénéficier de la reconnaissance travailleur handicapé", value=bool(apprenti.get("handicap")))

    st.subheader("Adresse")
    a1, a2, a3 = st.columns([1, 3, 2])
    numero = a1.text_input("N°", value=adresse.get("numero", ""), key="a_num")
    voie = a2.text_input("Voie", value=adresse.get("voie", ""), key="a_voie")
    complement = a3.text_input("Complément", value=adresse.get("complement", ""), key="a_comp")
    code_postal = a1.text_input("Code postal", value=adresse.get("code_postal", ""), key="a_cp")
    commune = a2.text_input("Commune", value=adresse.get("commune", ""), key="a_commune")
    telephone = _text("Téléphone", apprenti, "telephone", key="a_tel")
    email = _text("Courriel", apprenti, "email", key="a_mail")

    st.subheader("Situation et formation")
    situation = _text("Situation avant ce contrat", apprenti, "situation_avant_contrat", key="a_situation")
    dernier_diplome = _text("Dernier diplôme préparé", apprenti, "dernier_diplome", key="a_dernier")
    diplome_plus_eleve = _text("Diplôme le plus élevé obtenu", apprenti, "diplome_plus_eleve", key="a_eleve")
    cfa = _text("CFA (dénomination)", formation, "cfa_denomination", key="f_cfa")
    diplome_vise = _text("Diplôme ou titre visé", formation, "diplome_vise", key="f_diplome")
    intitule = _text("Intitulé précis", formation, "intitule", key="f_intitule")

    return clean_payload({
        "apprenti": {
            "nom": nom,
            "prenom": prenom,
            "nir": nir,
            "date_naissance": date_naissance,
            "sexe_masculin": sexe == "M",
            "sexe_feminin": sexe == "F",
            "departement_naissance": departement,
            "commune_naissance": commune_naissance,
            "nationalite": nationalite,
            "regime_social": regime_social,
            "handicap": "OUI" if handicap else "",
            "adresse": {
                "numero": numero,
                "voie": voie,
                "complement": complement,
                "code_postal": code_postal,
                "commune": commune,
            },
            "telephone": telephone,
            "email": email,
            "situation_avant_contrat": situation,
            "dernier_diplome": dernier_diplome,
            "diplome_plus_eleve": diplome_plus_eleve,
        },
        "formation": {
            "cfa_denomination": cfa,
            "diplome_vise": diplome_vise,
            "intitule": intitule,
        },
    })


def employer_form(saved: dict) -> dict:
    employeur = saved.get("employeur") or {}
    adresse = employeur.get("adresse") or {}
    maitre = saved.get("maitre_apprentissage") or {}
    contrat = saved.get("contrat") or {}

    st.subheader("L'employeur")
    secteur = st.radio("Employeur", ["privé", "public"], horizontal=True, index=1 if employeur.get("public") else 0)
    raison_sociale = _text("Nom ou dénomination", employeur, "raison_sociale", key="e_rs")
    c1, c2 = st.columns(2)
    siret = c1.text_input("N° SIRET", value=employeur.get("siret", ""))
    code_naf = c2.text_input("Code activité (NAF)", value=employeur.get("code_naf", ""))
    effectif = c1.text_input("Effectif salarié", value=str(employeur.get("effectif", "")))
    idcc = c2.text_input("Code IDCC de la convention", value=employeur.get("idcc", ""))
    convention = _text("Convention collective applicable", employeur, "convention_collective", key="e_cc")
    telephone = c1.text_input("Téléphone", value=employeur.get("telephone", ""), key="e_tel")
    email = c2.text_input("Courriel", value=employeur.get("email", ""), key="e_mail")

    a1, a2, a3 = st.columns([1, 3, 2])
    numero = a1.text_input("N°", value=adresse.get("numero", ""), key="e_num")
    voie = a2.text_input("Voie", value=adresse.get("voie", ""), key="e_voie")
    complement = a3.text_input("Complément", value=adresse.get("complement", ""), key="e_comp")
    code_postal = a1.text_input("Code postal", value=adresse.get("code_postal", ""), key="e_cp")
    commune = a2.text_input("Commune", value=adresse.get("commune", ""), key="e_commune")

    st.subheader("Le maître d'apprentissage")
    m1, m2 = st.columns(2)
    m_nom = m1.text_input("Nom", value=maitre.get("nom", ""), key="m_nom")
    m_prenom = m2.text_input("Prénom", value=maitre.get("prenom", ""), key="m_prenom")
    m_naissance = m1.text_input("Date de naissance", value=maitre.get("date_naissance", ""), key="m_naiss")
    m_emploi = m2.text_input("Emploi occupé", value=maitre.get("emploi", ""), key="m_emploi")

    st.subheader("Le contrat")
    k1, k2 = st.columns(2)
    type_contrat = k1.text_input("Type de contrat", value=contrat.get("type_contrat", ""))
    date_conclusion = k2.text_input("Date de conclusion", value=contrat.get("date_conclusion", ""))
    date_debut = k1.text_input("Date de début d'exécution", value=contrat.get("date_debut", ""))
    date_fin = k2.text_input("Date de fin du contrat", value=contrat.get("date_fin", ""))
    duree = k1.text_input("Durée hebdomadaire (heures)", value=str(contrat.get("duree_hebdo_heures", "")))
    salaire = k2.text_input("Salaire brut mensuel", value=str(contrat.get("salaire_brut_mensuel", "")))
    machines = st.checkbox("Travail sur machines dangereuses", value=bool(contrat.get("machines_dangereuses")))

    return clean_payload({
        "employeur": {
            "prive": secteur == "privé",
            "public": secteur == "public",
            "raison_sociale": raison_sociale,
            "siret": siret,
            "code_naf": code_naf,
            "effectif": effectif,
            "idcc": idcc,
            "convention_collective": convention,
            "telephone": telephone,
            "email": email,
            "adresse": {
                "numero": numero,
                "voie": voie,
                "complement": complement,
                "code_postal": code_postal,
                "commune": commune,
            },
        },
        "maitre_apprentissage": {
            "nom": m_nom,
            "prenom": m_prenom,
            "date_naissance": m_naissance,
            "emploi": m_emploi,
        },
        "contrat": {
            "type_contrat": type_contrat,
            "date_conclusion": date_conclusion,
            "date_debut": date_debut,
            "date_fin": date_fin,
            "duree_hebdo_heures": duree,
            "salaire_brut_mensuel": salaire,
            "machines_dangereuses": "OUI" if machines else "",
        },
    })


def render_role_form(token: str):
    r = requests.get(f"{BACKEND}/api/contract/by-token/{token}", timeout=15)
    if not r.ok:
        st.error(error_detail(r))
        st.stop()
    info = r.json()
    role = info["type"]

    st.title(ROLE_TITLES.get(role, "Formulaire"))
    st.caption(f"Contrat `{info['contractId'][:8]}`")
    if info.get("complete"):
        st.info("Vos informations ont déjà été transmises. Vous pouvez les corriger et renvoyer le formulaire.")

    with st.form("cerfa_form"):
        payload = student_form(info.get("data") or {}) if role == "etudiant" else employer_form(info.get("data") or {})
        submitted = st.form_submit_button("Envoyer")

    if submitted:
        with st.spinner("Envoi…"):
            r = requests.post(f"{BACKEND}/api/{role}/{token}", json=payload, timeout=30)
        if r.ok:
            st.success(r.json().get("message", "Enregistré"))
        else:
            st.error(error_detail(r))


# ------------- Dashboard -------------

def render_dashboard():
    st.title("Contrats d'apprentissage")

    if st.sidebar.button("Nouveau contrat"):
        r = requests.post(f"{BACKEND}/api/contracts", timeout=15)
        if r.ok:
            st.session_state["last_created"] = r.json()
        else:
            st.sidebar.error(error_detail(r))

    created = st.session_state.get("last_created")
    if created:
        st.sidebar.success(f"Contrat {created['contractId'][:8]} créé")
        st.sidebar.markdown("**Lien apprenti(e)**")
        st.sidebar.code(created["liens"]["etudiant"])
        st.sidebar.markdown("**Lien employeur**")
        st.sidebar.code(created["liens"]["entreprise"])

    r = requests.get(f"{BACKEND}/api/contracts", timeout=15)
    if not r.ok:
        st.error(error_detail(r))
        st.stop()
    contracts = r.json()
    if not contracts:
        st.info("Aucun contrat pour le moment.")
        return

    df = pd.DataFrame(contracts)
    df["contrat"] = df["id"].str[:8]
    st.dataframe(
        df[["contrat", "createdAt", "status", "etudiantComplete", "entrepriseComplete"]],
        use_container_width=True,
        hide_index=True,
    )

    for c in contracts:
        with st.expander(f"Contrat {c['id'][:8]} · {c['status']}"):
            st.markdown(f"Apprenti(e) : {c['liens']['etudiant']}")
            st.markdown(f"Employeur : {c['liens']['entreprise']}")
            col1, col2 = st.columns(2)
            if c["status"] == "ready":
                if col1.button("Générer le CERFA", key=f"gen_{c['id']}"):
                    pdf = requests.get(f"{BACKEND}/api/contracts/{c['id']}/generate-pdf", timeout=60)
                    if pdf.ok:
                        col1.download_button(
                            "Télécharger le PDF",
                            pdf.content,
                            file_name=f"cerfa_contrat_{c['id'][:8]}.pdf",
                            mime="application/pdf",
                            key=f"dl_{c['id']}",
                        )
                    else:
                        col1.error(error_detail(pdf))
            else:
                col1.caption("En attente des deux formulaires")
            if col2.button("Supprimer", key=f"del_{c['id']}"):
                d = requests.delete(f"{BACKEND}/api/contracts/{c['id']}", timeout=15)
                if d.ok:
                    st.rerun()
                else:
                    col2.error(error_detail(d))

    st.caption(f"Backend: {BACKEND}")


params = st.query_params
if params.get("token"):
    render_role_form(params.get("token"))
else:
    render_dashboard()
