"""
graphql_schema.py
=================
GraphQL schema of the Spiel API (served at ``POST /graphql``).

Queries:
    - ``spiel(id: ID!)`` → ``Spiel``
    - ``spiele(suchkriterien: SuchkriterienInput)`` → ``[Spiel!]``

Mutations:
    - ``create(input: SpielInput!)`` → ``CreatePayload``  (roles admin, user)
    - ``update(input: SpielUpdateInput!)`` → ``UpdatePayload``  (roles admin, user)
    - ``delete(id: ID!)`` → ``Boolean``  (role admin)
    - ``token(username, password)`` / ``refresh(refresh_token)`` → ``TokenResult``

Resolvers expect ``info.context`` to be a dict with ``db`` (SQLAlchemy
session), ``read_service``, ``write_service``, ``keycloak`` and ``roles``
(callable returning the caller's roles, or ``None`` when not logged in).
"""

import functools
import logging

import graphene
from graphql import GraphQLError
from pydantic import ValidationError

from database import SpielArt
from keycloak_client import KeycloakAuthError, KeycloakError
from spiel.dto import SpielDTO, SpielDtoOhneRef, validation_messages
from spiel.exceptions import SpielError
from spiel.services.pageable import create_pageable

logger = logging.getLogger('spielapi.graphql')

BAD_USER_INPUT = 'BAD_USER_INPUT'
UNAUTHENTICATED = 'UNAUTHENTICATED'
FORBIDDEN = 'FORBIDDEN'
INTERNAL_SERVER_ERROR = 'INTERNAL_SERVER_ERROR'


def _bad_input(message, **extra):
    extensions = {'code': BAD_USER_INPUT}
    extensions.update(extra)
    return GraphQLError(message, extensions=extensions)


def _internal_error(message):
    return GraphQLError(message, extensions={'code': INTERNAL_SERVER_ERROR})


def _domain_errors(resolver):
    """Report :class:`SpielError` and payload validation errors as ``BAD_USER_INPUT``."""
    @functools.wraps(resolver)
    def wrapper(root, info, **kwargs):
        try:
            return resolver(root, info, **kwargs)
        except SpielError as exc:
            logger.debug("%s: %s", resolver.__name__, exc.message)
            raise _bad_input(exc.message) from exc
        except ValidationError as exc:
            messages = validation_messages(exc)
            raise _bad_input('; '.join(messages), messages=messages) from exc
    return wrapper


def _require_roles(info, *roles):
    get_roles = info.context.get('roles')
    try:
        user_roles = get_roles() if get_roles else None
    except KeycloakError as exc:
        logger.error("Keycloak error: %s", exc)
        raise _internal_error('Identity provider unavailable') from exc
    if user_roles is None:
        raise GraphQLError('Unauthorized', extensions={'code': UNAUTHENTICATED})
    if not set(roles) & set(user_roles):
        raise GraphQLError('Forbidden resource', extensions={'code': FORBIDDEN})


def _parse_id(raw):
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise _bad_input(f"There is no Spiel with id {raw}.") from None


def _input_to_dict(value):
    """Plain dict of the fields a client actually set."""
    if value is None:
        return {}
    return {k: v for k, v in dict(value).items() if v is not None}


def build_schema():
    """Build and return the Spiel GraphQL schema using graphene."""

    Art = graphene.Enum.from_enum(SpielArt)

    # ------------------------------------------------------------------
    # Output types
    # ------------------------------------------------------------------

    class NameType(graphene.ObjectType):
        class Meta:
            name = 'Name'

        name       = graphene.String(required=True)
        untertitel = graphene.String()

    class BildType(graphene.ObjectType):
        class Meta:
            name = 'Bild'

        beschriftung = graphene.String(required=True)
        content_type = graphene.String(name='contentType', required=True)

    class SpielType(graphene.ObjectType):
        class Meta:
            name = 'Spiel'

        id            = graphene.ID(required=True)
        version       = graphene.Int(required=True)
        barcode       = graphene.String(required=True)
        rating        = graphene.Int()
        art           = graphene.Field(Art)
        preis         = graphene.Float(required=True)
        rabatt        = graphene.String(short=graphene.Boolean())
        lieferbar     = graphene.Boolean()
        datum         = graphene.String()
        homepage      = graphene.String()
        schlagwoerter = graphene.List(graphene.String)
        name          = graphene.Field(NameType)
        bilder        = graphene.List(graphene.NonNull(BildType))

        def resolve_preis(root, info):
            return float(root.preis)

        def resolve_rabatt(root, info, short=None):
            rabatt = root.rabatt if root.rabatt is not None else 0
            suffix = '%' if short is None or short else 'percent'
            return f"{rabatt} {suffix}"

        def resolve_datum(root, info):
            return root.datum.isoformat() if root.datum else None

    class CreatePayload(graphene.ObjectType):
        id = graphene.Int()

    class UpdatePayload(graphene.ObjectType):
        version = graphene.Int()

    class TokenResult(graphene.ObjectType):
        access_token       = graphene.String()
        expires_in         = graphene.Int()
        refresh_token      = graphene.String()
        refresh_expires_in = graphene.Int()

    # ------------------------------------------------------------------
    # Input types
    # ------------------------------------------------------------------

    class SuchkriterienInput(graphene.InputObjectType):
        barcode    = graphene.String()
        rating     = graphene.Int()
        art        = Art()
        preis      = graphene.Float()
        rabatt     = graphene.Float()
        lieferbar  = graphene.Boolean()
        datum      = graphene.String()
        homepage   = graphene.String()
        name       = graphene.String()
        javascript = graphene.Boolean()
        typescript = graphene.Boolean()
        java       = graphene.Boolean()
        python     = graphene.Boolean()

    class NameInput(graphene.InputObjectType):
        name       = graphene.String(required=True)
        untertitel = graphene.String()

    class BildInput(graphene.InputObjectType):
        beschriftung = graphene.String(required=True)
        content_type = graphene.String(name='contentType', required=True)

    def _scalar_inputs():
        return {
            'barcode':       graphene.String(),
            'rating':        graphene.Int(),
            'art':           Art(),
            'preis':         graphene.Float(),
            'rabatt':        graphene.Float(),
            'lieferbar':     graphene.Boolean(),
            'datum':         graphene.String(),
            'homepage':      graphene.String(),
            'schlagwoerter': graphene.List(graphene.String),
        }

    SpielInput = type('SpielInput', (graphene.InputObjectType,), dict(
        _scalar_inputs(),
        name=NameInput(required=True),
        bilder=graphene.List(graphene.NonNull(BildInput)),
    ))

    SpielUpdateInput = type('SpielUpdateInput', (graphene.InputObjectType,), dict(
        _scalar_inputs(),
        id=graphene.ID(required=True),
        version=graphene.Int(required=True),
    ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    class Query(graphene.ObjectType):
        spiel = graphene.Field(SpielType, id=graphene.ID(required=True))
        spiele = graphene.List(graphene.NonNull(SpielType), suchkriterien=SuchkriterienInput())

        @_domain_errors
        def resolve_spiel(root, info, id):
            logger.debug("spiel: id=%s", id)
            ctx = info.context
            return ctx['read_service'].find_by_id(ctx['db'], _parse_id(id), mit_bilder=True)

        @_domain_errors
        def resolve_spiele(root, info, suchkriterien=None):
            criteria = _input_to_dict(suchkriterien)
            logger.debug("spiele: suchkriterien=%s", criteria)
            ctx = info.context
            slice_ = ctx['read_service'].find(ctx['db'], criteria, create_pageable())
            return slice_.content

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    class Mutation(graphene.ObjectType):
        create = graphene.Field(CreatePayload, input=SpielInput(required=True))
        update = graphene.Field(UpdatePayload, input=SpielUpdateInput(required=True))
        delete = graphene.Boolean(id=graphene.ID(required=True))
        token = graphene.Field(
            TokenResult,
            username=graphene.String(required=True),
            password=graphene.String(required=True),
        )
        refresh = graphene.Field(TokenResult, refresh_token=graphene.String(required=True))

        @_domain_errors
        def resolve_create(root, info, input):
            _require_roles(info, 'admin', 'user')
            payload = _input_to_dict(input)
            payload['name'] = _input_to_dict(input.get('name'))
            if input.get('bilder') is not None:
                payload['bilder'] = [
                    {'beschriftung': b.get('beschriftung'), 'contentType': b.get('content_type')}
                    for b in input['bilder']
                ]
            dto = SpielDTO.model_validate(payload)
            ctx = info.context
            new_id = ctx['write_service'].create(ctx['db'], dto.to_spiel())
            logger.debug("create: id=%s", new_id)
            return CreatePayload(id=new_id)

        @_domain_errors
        def resolve_update(root, info, input):
            _require_roles(info, 'admin', 'user')
            payload = _input_to_dict(input)
            spiel_id = _parse_id(payload.pop('id'))
            version = f'"{payload.pop("version")}"'
            dto = SpielDtoOhneRef.model_validate(payload)
            ctx = info.context
            new_version = ctx['write_service'].update(ctx['db'], spiel_id, dto.scalar_fields(), version)
            logger.debug("update: version=%s", new_version)
            return UpdatePayload(version=new_version)

        @_domain_errors
        def resolve_delete(root, info, id):
            _require_roles(info, 'admin')
            ctx = info.context
            deleted = ctx['write_service'].delete(ctx['db'], _parse_id(id))
            logger.debug("delete: id=%s, deleted=%s", id, deleted)
            return deleted

        def resolve_token(root, info, username, password):
            return _token_call(info, lambda kc: kc.token(username, password))

        def resolve_refresh(root, info, refresh_token):
            return _token_call(info, lambda kc: kc.refresh(refresh_token))

    def _token_call(info, call):
        keycloak = info.context.get('keycloak')
        if keycloak is None:
            raise _internal_error('Identity provider not configured')
        try:
            return TokenResult(**call(keycloak))
        except KeycloakAuthError as exc:
            raise _bad_input('Wrong username or password') from exc
        except KeycloakError as exc:
            logger.error("Keycloak error: %s", exc)
            raise _internal_error('Identity provider unavailable') from exc

    return graphene.Schema(query=Query, mutation=Mutation, auto_camelcase=False)
