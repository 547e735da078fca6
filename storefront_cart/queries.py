"""GraphQL documents for the storefront cart API."""

MONEY_FRAGMENT = """
fragment Money on MoneyV2 {
  amount
  currencyCode
}
"""

CART_LINE_FRAGMENT = """
fragment CartLine on CartLine {
  id
  quantity
  cost {
    totalAmount { ...Money }
    amountPerQuantity { ...Money }
    compareAtAmountPerQuantity { ...Money }
  }
  discountAllocations {
    discountedAmount { ...Money }
    ... on CartCodeDiscountAllocation { code }
    ... on CartAutomaticDiscountAllocation { title }
    ... on CartCustomDiscountAllocation { title }
  }
  merchandise {
    ... on ProductVariant {
      id
      title
      availableForSale
      price { ...Money }
      image { url altText width height }
      selectedOptions { name value }
      product { handle title }
    }
  }
}
"""

CART_FRAGMENT = (
    MONEY_FRAGMENT
    + CART_LINE_FRAGMENT
    + """
fragment CartApi on Cart {
  id
  checkoutUrl
  totalQuantity
  note
  updatedAt
  buyerIdentity {
    countryCode
    email
    phone
    customer { id email firstName lastName displayName }
  }
  lines(first: 250) {
    nodes { ...CartLine }
  }
  cost {
    subtotalAmount { ...Money }
    totalAmount { ...Money }
    totalTaxAmount { ...Money }
  }
  discountCodes { code applicable }
  appliedGiftCards {
    id
    lastCharacters
    amountUsed { ...Money }
  }
}
"""
)

_PAYLOAD = """
    cart { ...CartApi }
    userErrors { code field message }
    warnings { code message target }
"""


def _mutation(name: str, field: str, signature: str, arguments: str) -> str:
    return (
        CART_FRAGMENT
        + f"""
mutation {name}({signature}, $country: CountryCode, $language: LanguageCode)
  @inContext(country: $country, language: $language) {{
  {field}({arguments}) {{{_PAYLOAD}  }}
}}
"""
    )


CART_QUERY = (
    CART_FRAGMENT
    + """
query CartQuery($cartId: ID!, $country: CountryCode, $language: LanguageCode)
  @inContext(country: $country, language: $language) {
  cart(id: $cartId) { ...CartApi }
}
"""
)

CART_CREATE_MUTATION = _mutation(
    "cartCreate", "cartCreate", "$input: CartInput!", "input: $input"
)
CART_LINES_ADD_MUTATION = _mutation(
    "cartLinesAdd", "cartLinesAdd", "$cartId: ID!, $lines: [CartLineInput!]!",
    "cartId: $cartId, lines: $lines",
)
CART_LINES_UPDATE_MUTATION = _mutation(
    "cartLinesUpdate", "cartLinesUpdate", "$cartId: ID!, $lines: [CartLineUpdateInput!]!",
    "cartId: $cartId, lines: $lines",
)
CART_LINES_REMOVE_MUTATION = _mutation(
    "cartLinesRemove", "cartLinesRemove", "$cartId: ID!, $lineIds: [ID!]!",
    "cartId: $cartId, lineIds: $lineIds",
)
CART_DISCOUNT_CODES_UPDATE_MUTATION = _mutation(
    "cartDiscountCodesUpdate", "cartDiscountCodesUpdate", "$cartId: ID!, $discountCodes: [String!]",
    "cartId: $cartId, discountCodes: $discountCodes",
)
CART_GIFT_CARD_CODES_UPDATE_MUTATION = _mutation(
    "cartGiftCardCodesUpdate", "cartGiftCardCodesUpdate", "$cartId: ID!, $giftCardCodes: [String!]!",
    "cartId: $cartId, giftCardCodes: $giftCardCodes",
)
CART_GIFT_CARD_CODES_REMOVE_MUTATION = _mutation(
    "cartGiftCardCodesRemove", "cartGiftCardCodesRemove",
    "$cartId: ID!, $appliedGiftCardIds: [ID!]!",
    "cartId: $cartId, appliedGiftCardIds: $appliedGiftCardIds",
)
CART_BUYER_IDENTITY_UPDATE_MUTATION = _mutation(
    "cartBuyerIdentityUpdate", "cartBuyerIdentityUpdate",
    "$cartId: ID!, $buyerIdentity: CartBuyerIdentityInput!",
    "cartId: $cartId, buyerIdentity: $buyerIdentity",
)
